import dataclasses
import json
from datetime import datetime
from enum import Enum
from typing import Any

from ulid import ULID

import storage.db_config as db_config
from datamodel import *
from events import bus, E
from logger import logger
from utils import ensure_utc, from_db_ts, now_utc, to_db_ts

__all__ = [
    "insert_reminder",
    "find_due",
    "mark_sent",
    "reschedule",
    "mark_invalid_token",
    "delete_older_than",
    "get_reminder",
    "list_reminders",
    "count_reminders",
    "update_reminder",
    "delete_reminder",
    "purge_invalid",
]

_COLUMNS = (
    "reminder_id, kind, title, body, destination, data, trigger_at, recurring, recurrence_type, "
    "sent, sent_at, last_sent_at, invalid_token, created_at, updated_at"
)

# 用户可编辑的字段, 其余字段只由调度器维护
_EDITABLE_FIELDS = frozenset({
    "title", "body", "trigger_at", "recurring", "recurrence_type", "destination", "kind", "data",
})

_KNOWN_RECURRENCE = frozenset(r.value for r in RecurrenceType)

_STATUS_FILTERS = {
    "pending": "sent = 0 AND recurring = 0",
    "recurring": "recurring = 1",
    "sent": "sent = 1",
}


def _ensure_conn():
    if db_config.conn is None:
        raise RuntimeError("数据库未初始化，请先调用 init_db()")


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _loads_data(raw_data: str | None) -> dict[str, Any]:
    if raw_data is None or raw_data.strip() == "":
        return {}
    try:
        loaded = json.loads(raw_data)
    except json.JSONDecodeError:
        logger.warning("提醒 data 解析失败，已忽略")
        return {}
    return loaded if isinstance(loaded, dict) else {}


def _row_to_reminder(row) -> ReminderRecord:
    return ReminderRecord(
        reminder_id=row[0],
        kind=row[1],
        title=row[2],
        body=row[3],
        destination=row[4],
        data=_loads_data(row[5]),
        trigger_at=from_db_ts(row[6]),
        recurring=bool(row[7]),
        recurrence_type=row[8],
        sent=bool(row[9]),
        sent_at=from_db_ts(row[10]),
        last_sent_at=from_db_ts(row[11]),
        invalid_token=bool(row[12]),
        created_at=from_db_ts(row[13]),
        updated_at=from_db_ts(row[14]),
    )


def _normalize(reminder: ReminderRecord) -> None:
    """校验并规整用户可写字段, 非法时抛出 ReminderValidationError"""
    title = (reminder.title or "").strip()
    if not title:
        raise ReminderValidationError("title 不能为空")
    reminder.title = title

    if reminder.trigger_at is None:
        raise ReminderValidationError("trigger_at 不能为空")
    if not isinstance(reminder.trigger_at, datetime):
        raise ReminderValidationError(f"trigger_at 必须为 datetime: {reminder.trigger_at!r}")
    reminder.trigger_at = ensure_utc(reminder.trigger_at)

    reminder.body = reminder.body or ""
    reminder.kind = str(_enum_value(reminder.kind) or NotificationKind.CUSTOM.value)
    if reminder.data is None:
        reminder.data = {}
    if not isinstance(reminder.data, dict):
        raise ReminderValidationError("data 必须为 JSON 对象")

    reminder.recurring = bool(reminder.recurring)
    if not reminder.recurring:
        reminder.recurrence_type = None
    elif reminder.recurrence_type is not None:
        reminder.recurrence_type = str(_enum_value(reminder.recurrence_type)).strip().lower()
        if reminder.recurrence_type not in _KNOWN_RECURRENCE:
            # 沿用既有行为: 保存原值, 触发时按 daily 推算
            logger.warning(f"未知的重复类型: {reminder.recurrence_type}, 触发时将按 daily 处理")


def _build_filters(
    status: str | None,
    invalid_token: bool | None,
    q: str | None,
) -> tuple[str, list[Any]]:
    where_clauses: list[str] = []
    params: list[Any] = []

    if status:
        clause = _STATUS_FILTERS.get(status)
        if clause is None:
            raise ReminderValidationError(f"未知的状态过滤: {status}")
        where_clauses.append(clause)
    if invalid_token is not None:
        where_clauses.append("invalid_token = ?")
        params.append(1 if invalid_token else 0)
    if q:
        where_clauses.append("(title LIKE ? OR body LIKE ?)")
        params.extend([f"%{q}%", f"%{q}%"])

    where_sql = ""
    if where_clauses:
        where_sql = "WHERE " + " AND ".join(where_clauses)
    return where_sql, params


async def insert_reminder(reminder: ReminderRecord, now: datetime | None = None) -> ReminderRecord:
    """创建提醒

    总是分配新的 reminder_id, 并补全默认值: sent=False, created_at=now,
    未给出 trigger_at 时立即触发。返回写入后的记录副本。
    """
    _ensure_conn()
    now = ensure_utc(now or now_utc())
    stored = dataclasses.replace(reminder, data=dict(reminder.data or {}))
    if stored.trigger_at is None:
        stored.trigger_at = now
    _normalize(stored)

    stored.reminder_id = str(ULID())
    stored.sent = False
    stored.sent_at = None
    stored.last_sent_at = None
    stored.invalid_token = False
    stored.created_at = now
    stored.updated_at = now

    await db_config.conn.execute(
        f"INSERT INTO reminders ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            stored.reminder_id,
            stored.kind,
            stored.title,
            stored.body,
            stored.destination,
            json.dumps(stored.data, ensure_ascii=False),
            to_db_ts(stored.trigger_at),
            1 if stored.recurring else 0,
            stored.recurrence_type,
            0,
            None,
            None,
            0,
            to_db_ts(now),
            to_db_ts(now),
        ),
    )
    await db_config.conn.commit()
    bus.emit(E.REMINDER_CREATED, reminder=stored)
    logger.trace(
        f"创建提醒: reminder_id={stored.reminder_id}, title={stored.title}, "
        f"trigger_at={to_db_ts(stored.trigger_at)}, recurring={stored.recurring}, recurrence_type={stored.recurrence_type}"
    )
    return stored


async def find_due(now: datetime) -> list[ReminderRecord]:
    """获取所有已到期且未终结的提醒, 不保证顺序"""
    _ensure_conn()
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders WHERE sent = 0 AND trigger_at <= ?",
        (to_db_ts(now),),
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_reminder(row) for row in rows]


async def mark_sent(reminder_id: str, sent_at: datetime) -> bool:
    """标记一次性提醒已发送。幂等: 已发送或不存在时不做任何修改, 返回 False"""
    _ensure_conn()
    ts = to_db_ts(sent_at)
    async with db_config.conn.execute(
        "UPDATE reminders SET sent = 1, sent_at = ?, updated_at = ? WHERE reminder_id = ? AND sent = 0",
        (ts, ts, reminder_id),
    ) as cursor:
        changed = cursor.rowcount > 0
    await db_config.conn.commit()
    if not changed:
        logger.trace(f"提醒已是终态或不存在, 跳过标记: reminder_id={reminder_id}")
    return changed


async def reschedule(reminder_id: str, next_trigger_at: datetime, last_sent_at: datetime) -> bool:
    """重复提醒投递后写入下次触发时间。记录已被删除时只记日志"""
    _ensure_conn()
    async with db_config.conn.execute(
        "UPDATE reminders SET trigger_at = ?, last_sent_at = ?, updated_at = ? WHERE reminder_id = ?",
        (to_db_ts(next_trigger_at), to_db_ts(last_sent_at), to_db_ts(last_sent_at), reminder_id),
    ) as cursor:
        changed = cursor.rowcount > 0
    await db_config.conn.commit()
    if not changed:
        logger.warning(f"重排提醒时记录不存在(可能已被删除): reminder_id={reminder_id}")
        return False
    logger.trace(f"重排提醒: reminder_id={reminder_id}, next_trigger_at={to_db_ts(next_trigger_at)}")
    return True


async def mark_invalid_token(reminder_id: str, now: datetime | None = None) -> bool:
    """标记投递目标已失效, 不删除记录也不推进 trigger_at"""
    _ensure_conn()
    async with db_config.conn.execute(
        "UPDATE reminders SET invalid_token = 1, updated_at = ? WHERE reminder_id = ?",
        (to_db_ts(now or now_utc()), reminder_id),
    ) as cursor:
        changed = cursor.rowcount > 0
    await db_config.conn.commit()
    if not changed:
        logger.warning(f"标记目标失效时记录不存在(可能已被删除): reminder_id={reminder_id}")
    return changed


async def delete_older_than(cutoff: datetime) -> int:
    """删除 sent_at 早于 cutoff 的已发送一次性提醒(严格小于), 返回删除数量"""
    _ensure_conn()
    async with db_config.conn.execute(
        "DELETE FROM reminders WHERE sent = 1 AND recurring = 0 AND sent_at IS NOT NULL AND sent_at < ?",
        (to_db_ts(cutoff),),
    ) as cursor:
        deleted = cursor.rowcount
    await db_config.conn.commit()
    logger.debug(f"清理过期提醒: cutoff={to_db_ts(cutoff)}, deleted={deleted}")
    return deleted


async def get_reminder(reminder_id: str) -> ReminderRecord | None:
    _ensure_conn()
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders WHERE reminder_id = ?",
        (reminder_id,),
    ) as cursor:
        row = await cursor.fetchone()
    return _row_to_reminder(row) if row else None


async def list_reminders(
    status: str | None = None,
    invalid_token: bool | None = None,
    q: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ReminderRecord]:
    """按条件分页列出提醒, 按 ULID 倒序(即创建时间倒序)"""
    _ensure_conn()
    where_sql, params = _build_filters(status, invalid_token, q)
    async with db_config.conn.execute(
        f"SELECT {_COLUMNS} FROM reminders {where_sql} ORDER BY reminder_id DESC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_reminder(row) for row in rows]


async def count_reminders(
    status: str | None = None,
    invalid_token: bool | None = None,
    q: str | None = None,
) -> int:
    _ensure_conn()
    where_sql, params = _build_filters(status, invalid_token, q)
    async with db_config.conn.execute(
        f"SELECT COUNT(*) FROM reminders {where_sql}",
        tuple(params),
    ) as cursor:
        row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def update_reminder(
    reminder_id: str,
    changes: dict[str, Any],
    now: datetime | None = None,
) -> ReminderRecord | None:
    """用户编辑提醒。记录不存在时返回 None

    更换 destination 会清除 invalid_token 标记。
    """
    _ensure_conn()
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ReminderValidationError(f"不可编辑的字段: {', '.join(sorted(unknown))}")

    current = await get_reminder(reminder_id)
    if current is None:
        return None

    updated = dataclasses.replace(current, **changes)
    _normalize(updated)
    if "destination" in changes and changes["destination"] != current.destination:
        updated.invalid_token = False
    if updated.recurring and updated.sent:
        # 已发送的一次性提醒改为重复提醒后重新进入调度
        updated.sent = False
        updated.sent_at = None
    updated.updated_at = ensure_utc(now or now_utc())

    async with db_config.conn.execute(
        "UPDATE reminders SET kind = ?, title = ?, body = ?, destination = ?, data = ?, trigger_at = ?, "
        "recurring = ?, recurrence_type = ?, sent = ?, sent_at = ?, invalid_token = ?, updated_at = ? WHERE reminder_id = ?",
        (
            updated.kind,
            updated.title,
            updated.body,
            updated.destination,
            json.dumps(updated.data, ensure_ascii=False),
            to_db_ts(updated.trigger_at),
            1 if updated.recurring else 0,
            updated.recurrence_type,
            1 if updated.sent else 0,
            to_db_ts(updated.sent_at) if updated.sent_at else None,
            1 if updated.invalid_token else 0,
            to_db_ts(updated.updated_at),
            reminder_id,
        ),
    ) as cursor:
        changed = cursor.rowcount > 0
    await db_config.conn.commit()
    if not changed:
        # 读取与写入之间被并发删除
        logger.warning(f"更新提醒时记录不存在(可能已被删除): reminder_id={reminder_id}")
        return None

    bus.emit(E.REMINDER_UPDATED, reminder=updated)
    logger.trace(f"更新提醒: reminder_id={reminder_id}, fields={sorted(changes)}")
    return updated


async def delete_reminder(reminder_id: str) -> bool:
    _ensure_conn()
    async with db_config.conn.execute(
        "DELETE FROM reminders WHERE reminder_id = ?",
        (reminder_id,),
    ) as cursor:
        deleted = cursor.rowcount > 0
    await db_config.conn.commit()
    if deleted:
        bus.emit(E.REMINDER_DELETED, reminder_id=reminder_id)
        logger.trace(f"删除提醒: reminder_id={reminder_id}")
    return deleted


async def purge_invalid(destination: str | None = None) -> int:
    """删除投递目标已失效的提醒, 可只处理某个 destination。返回删除数量"""
    _ensure_conn()
    sql = "DELETE FROM reminders WHERE invalid_token = 1"
    params: tuple[Any, ...] = ()
    if destination is not None:
        sql += " AND destination = ?"
        params = (destination,)
    async with db_config.conn.execute(sql, params) as cursor:
        deleted = cursor.rowcount
    await db_config.conn.commit()
    if deleted:
        bus.emit(E.REMINDERS_PURGED, deleted=deleted, destination=destination)
    logger.info(f"清理失效目标的提醒: destination={destination or '*'}, deleted={deleted}")
    return deleted
