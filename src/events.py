"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

提醒的生命周期变化(创建、投递、重排、目标失效、清理)都会在总线上广播，
外部组件只需订阅，不必侵入调度器本身。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Awaitable, Callable, Union

from logger import logger

Handler = Callable[..., Union[Awaitable[None], None]]

# 事件名集中定义
class E:
    REMINDER_CREATED = "reminder.created"
    REMINDER_UPDATED = "reminder.updated"
    REMINDER_DELETED = "reminder.deleted"
    REMINDER_DELIVERED = "reminder.delivered"
    REMINDER_RESCHEDULED = "reminder.rescheduled"
    REMINDER_CHANNEL_INVALID = "reminder.channel_invalid"
    REMINDERS_CLEANED = "reminder.cleaned"
    REMINDERS_PURGED = "reminder.purged"


class Bus(AsyncIOEventEmitter):
    def on(self, event: str) -> Callable[[Handler], Handler]:
        """注册事件处理器装饰器"""
        def decorator(handler: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {handler.__name__}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator


bus = Bus()

__all__ = ["bus", "E"]
