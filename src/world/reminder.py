"""提醒调度器

每轮(tick)取出所有到期提醒并发投递:
- 投递成功: 重复提醒推算下次触发时间并重排, 一次性提醒标记为已发送;
- 目标永久失效: 只打 invalid_token 标记, 不删除、不推进 trigger_at;
- 其它失败: 保持原样, 下一轮自然重试(无退避、无次数上限)。
单条提醒的失败不会影响同一轮里的其它提醒。
另有按天执行的清理, 删除超过保留期的已发送一次性提醒。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Literal

from channels.base import DeliveryResult, DeliverySink
from config.settings import (
    REMINDER_CLEANUP_INTERVAL_SECONDS,
    REMINDER_RETENTION_DAYS,
    REMINDER_TICK_SECONDS,
    USER_TIMEZONE,
)
from datamodel import ReminderRecord
from events import bus, E
from logger import logger
from metrics import runtime_metrics
import storage.reminder as reminder_storage
from utils import now_utc, to_db_ts
from world.recurrence import next_trigger

__all__ = ["ReminderScheduler", "TickSummary"]

Outcome = Literal["delivered", "rescheduled", "channel_invalid", "failed"]


@dataclass
class TickSummary:
    due: int = 0
    delivered: int = 0
    rescheduled: int = 0
    channel_invalid: int = 0
    failed: int = 0
    skipped: bool = False


class ReminderScheduler:
    def __init__(
        self,
        sink: DeliverySink,
        store=reminder_storage,
        clock: Callable[[], datetime] = now_utc,
        tick_seconds: float = REMINDER_TICK_SECONDS,
        cleanup_interval_seconds: float = REMINDER_CLEANUP_INTERVAL_SECONDS,
        retention: timedelta = timedelta(days=REMINDER_RETENTION_DAYS),
        timezone: str = USER_TIMEZONE,
    ) -> None:
        self.sink = sink
        self.store = store
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.retention = retention
        self.timezone = timezone

        self._tick_running = False
        self._shutdown_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._last_check_at_epoch: float | None = None
        self._last_cleanup_at_epoch: float | None = None

    def get_status(self) -> dict[str, object]:
        running = self._shutdown_event is not None and not self._shutdown_event.is_set()
        return {
            "running": running,
            "tick_running": self._tick_running,
            "tick_seconds": self.tick_seconds,
            "last_check_at_epoch": self._last_check_at_epoch,
            "last_cleanup_at_epoch": self._last_cleanup_at_epoch,
            "channel": self.sink.channel_type.value,
        }

    async def tick(self) -> TickSummary:
        """执行一轮到期扫描。上一轮尚未结束时直接跳过"""
        if self._tick_running:
            logger.warning("上一轮提醒扫描尚未结束, 跳过本轮")
            runtime_metrics.record_tick_skipped()
            return TickSummary(skipped=True)

        self._tick_running = True
        started = time.perf_counter()
        summary = TickSummary()
        try:
            now = self.clock()
            due = await self.store.find_due(now)
            summary.due = len(due)
            if not due:
                logger.trace("没有到期的提醒")
                return summary

            logger.info(f"发现 {len(due)} 条到期提醒")
            results = await asyncio.gather(
                *(self._process_one(reminder, now) for reminder in due),
                return_exceptions=True,
            )
            for reminder, result in zip(due, results):
                if isinstance(result, BaseException):
                    logger.opt(exception=result).error(f"处理提醒时发生异常: reminder_id={reminder.reminder_id}")
                    summary.failed += 1
                elif result == "rescheduled":
                    summary.delivered += 1
                    summary.rescheduled += 1
                elif result == "delivered":
                    summary.delivered += 1
                elif result == "channel_invalid":
                    summary.channel_invalid += 1
                else:
                    summary.failed += 1

            logger.info(
                f"提醒扫描完成: due={summary.due}, delivered={summary.delivered}, "
                f"rescheduled={summary.rescheduled}, channel_invalid={summary.channel_invalid}, failed={summary.failed}"
            )
            return summary
        finally:
            runtime_metrics.record_tick(latency_ms=(time.perf_counter() - started) * 1000, due=summary.due)
            self._tick_running = False

    async def _process_one(self, reminder: ReminderRecord, now: datetime) -> Outcome:
        metadata = {
            **reminder.data,
            "reminder_id": reminder.reminder_id,
            "kind": reminder.kind,
        }
        try:
            result = await self.sink.deliver(reminder.title, reminder.body, reminder.destination, metadata)
        except Exception as e:
            logger.opt(exception=e).error(f"投递提醒时发生异常, 下一轮重试: reminder_id={reminder.reminder_id}")
            runtime_metrics.record_delivery_failed()
            return "failed"

        if result is DeliveryResult.CHANNEL_INVALID:
            logger.warning(f"投递目标已失效, 等待外部清理: reminder_id={reminder.reminder_id}, destination={reminder.destination}")
            await self.store.mark_invalid_token(reminder.reminder_id, now)
            runtime_metrics.record_channel_invalid()
            bus.emit(E.REMINDER_CHANNEL_INVALID, reminder=reminder)
            return "channel_invalid"

        if result is not DeliveryResult.DELIVERED:
            logger.warning(f"投递暂时失败, 下一轮重试: reminder_id={reminder.reminder_id}, result={result}")
            runtime_metrics.record_delivery_failed()
            return "failed"

        bus.emit(E.REMINDER_DELIVERED, reminder=reminder, sent_at=now)
        if reminder.recurring:
            next_at = next_trigger(reminder.trigger_at, reminder.recurrence_type, self.timezone)
            await self.store.reschedule(reminder.reminder_id, next_at, now)
            runtime_metrics.record_delivered(rescheduled=True)
            bus.emit(E.REMINDER_RESCHEDULED, reminder=reminder, next_trigger_at=next_at)
            logger.debug(f"重复提醒已投递: reminder_id={reminder.reminder_id}, next={to_db_ts(next_at)}")
            return "rescheduled"

        await self.store.mark_sent(reminder.reminder_id, now)
        runtime_metrics.record_delivered(rescheduled=False)
        logger.debug(f"一次性提醒已投递: reminder_id={reminder.reminder_id}")
        return "delivered"

    async def send_now(
        self,
        title: str,
        body: str,
        destination: str | None,
        data: dict | None = None,
    ) -> DeliveryResult:
        """不经过存储直接投递一条通知, 结果不影响任何提醒记录"""
        try:
            result = await self.sink.deliver(title, body, destination, dict(data or {}))
        except Exception as e:
            logger.opt(exception=e).error(f"即时投递时发生异常: destination={destination}")
            runtime_metrics.record_delivery_failed()
            return DeliveryResult.TRANSIENT_FAILURE

        if result is DeliveryResult.DELIVERED:
            logger.info(f"即时通知已投递: title={title}, destination={destination or '-'}")
        elif result is DeliveryResult.CHANNEL_INVALID:
            runtime_metrics.record_channel_invalid()
            logger.warning(f"即时通知的投递目标已失效: destination={destination}")
        else:
            runtime_metrics.record_delivery_failed()
            logger.warning(f"即时通知投递失败: destination={destination}, result={result}")
        return result

    async def cleanup(self) -> int:
        """删除 sent_at 早于 now - retention 的已发送一次性提醒"""
        cutoff = self.clock() - self.retention
        deleted = await self.store.delete_older_than(cutoff)
        self._last_cleanup_at_epoch = time.time()
        runtime_metrics.record_cleaned(deleted)
        bus.emit(E.REMINDERS_CLEANED, deleted=deleted, cutoff=cutoff)
        logger.info(f"已清理 {deleted} 条过期提醒 (cutoff={to_db_ts(cutoff)})")
        return deleted

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """主循环, 直到 shutdown_event 被设置。启动时先清理一次"""
        self._shutdown_event = shutdown_event
        logger.info(f"Reminder 调度循环已启动, 间隔 {self.tick_seconds}s")
        next_cleanup_at = time.monotonic()

        while not shutdown_event.is_set():
            self._last_check_at_epoch = time.time()
            try:
                await self.tick()
            except Exception as e:
                logger.opt(exception=e).error("提醒扫描失败, 等待下一轮")

            if time.monotonic() >= next_cleanup_at:
                next_cleanup_at = time.monotonic() + self.cleanup_interval_seconds
                try:
                    await self.cleanup()
                except Exception as e:
                    logger.opt(exception=e).error("清理过期提醒失败")

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Reminder 调度循环已关闭")

    def start(self, shutdown_event: asyncio.Event | None = None) -> asyncio.Task[None]:
        if self._task is not None and not self._task.done():
            raise RuntimeError("调度器已在运行")
        self._shutdown_event = shutdown_event or asyncio.Event()
        self._task = asyncio.create_task(self.run(self._shutdown_event))
        return self._task

    async def stop(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        if self._task is not None:
            await self._task
            self._task = None
