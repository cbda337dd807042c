from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from config.settings import USER_TIMEZONE
from datamodel import NotificationKind, ReminderRecord
from utils import utc_to_user_local_min
from world.reminder import ReminderScheduler


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float
    scheduler: ReminderScheduler | None = None


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class ReminderCreate(BaseModel):
    title: str
    body: str = ""
    trigger_at: Optional[datetime] = None  # 缺省为立即触发
    recurring: bool = False
    # 保持字符串, 未知类型按 daily 处理
    recurrence_type: Optional[str] = None
    destination: Optional[str] = None
    kind: NotificationKind = NotificationKind.CUSTOM
    data: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> ReminderRecord:
        return ReminderRecord(
            title=self.title,
            body=self.body,
            trigger_at=self.trigger_at,
            recurring=self.recurring,
            recurrence_type=self.recurrence_type,
            destination=self.destination,
            kind=self.kind.value,
            data=self.data,
        )


_NON_NULLABLE_UPDATE_FIELDS = ("recurring", "body", "kind", "data")


class ReminderUpdate(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    trigger_at: Optional[datetime] = None
    recurring: Optional[bool] = None
    recurrence_type: Optional[str] = None
    destination: Optional[str] = None
    kind: Optional[NotificationKind] = None
    data: Optional[dict[str, Any]] = None

    def to_changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True)
        # 这些字段不可为空, 显式传 null 视为未修改
        for name in _NON_NULLABLE_UPDATE_FIELDS:
            if name in changes and changes[name] is None:
                del changes[name]
        if changes.get("kind") is not None:
            changes["kind"] = changes["kind"].value
        return changes


class TaskReminderCreate(BaseModel):
    task_title: str
    starts_at: datetime
    minutes_before: int = Field(default=15, ge=0)
    priority: Optional[str] = None
    task_id: Optional[str] = None
    destination: Optional[str] = None


class RoutineReminderCreate(BaseModel):
    kind: NotificationKind
    time_of_day: str = Field(description="用户时区的 HH:MM")
    habit_title: Optional[str] = None
    destination: Optional[str] = None


class NotificationSend(BaseModel):
    title: str = "Nudge"
    body: str = "You have a notification"
    destination: Optional[str] = None  # 为空时由通道使用默认目标
    sound: str = "default"
    data: dict[str, Any] = Field(default_factory=dict)


class PurgeInvalidRequest(BaseModel):
    destination: Optional[str] = None


class ReminderOut(BaseModel):
    reminder_id: str
    kind: str
    title: str
    body: str
    trigger_at: datetime
    trigger_at_local: str
    recurring: bool
    recurrence_type: Optional[str]
    destination: Optional[str]
    data: dict[str, Any]
    status: str
    sent: bool
    sent_at: Optional[datetime]
    last_sent_at: Optional[datetime]
    invalid_token: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_record(cls, reminder: ReminderRecord) -> "ReminderOut":
        if reminder.recurring:
            status = "recurring"
        elif reminder.sent:
            status = "sent"
        else:
            status = "pending"
        return cls(
            reminder_id=reminder.reminder_id,
            kind=reminder.kind,
            title=reminder.title,
            body=reminder.body,
            trigger_at=reminder.trigger_at,
            trigger_at_local=utc_to_user_local_min(reminder.trigger_at, USER_TIMEZONE),
            recurring=reminder.recurring,
            recurrence_type=reminder.recurrence_type,
            destination=reminder.destination,
            data=reminder.data,
            status=status,
            sent=reminder.sent,
            sent_at=reminder.sent_at,
            last_sent_at=reminder.last_sent_at,
            invalid_token=reminder.invalid_token,
            created_at=reminder.created_at,
            updated_at=reminder.updated_at,
        )


__all__ = [
    "RuntimeControl", "ShutdownRequest",
    "ReminderCreate", "ReminderUpdate", "TaskReminderCreate", "RoutineReminderCreate", "ReminderOut",
    "NotificationSend", "PurgeInvalidRequest",
]
