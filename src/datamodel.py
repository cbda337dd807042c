from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "ReminderRecord", "RecurrenceType", "NotificationKind",
    "ReminderValidationError",
]


class ReminderValidationError(ValueError):
    """提醒记录缺少必填字段或字段非法, 记录不会被保存"""


# ----------------- Reminder 数据模型 ----------------
class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    WEEKDAYS = "weekdays"
    HOURLY = "hourly"


class NotificationKind(str, Enum):
    TASK_REMINDER = "task_reminder"
    HABIT_REMINDER = "habit_reminder"
    MORNING_ROUTINE = "morning_routine"
    NIGHT_ROUTINE = "night_routine"
    REFLECTION_PROMPT = "reflection_prompt"
    STREAK_ALERT = "streak_alert"
    GOAL_DEADLINE = "goal_deadline"
    CUSTOM = "custom"


@dataclass
class ReminderRecord:
    """一条提醒记录

    一次性提醒投递后 sent=True 且不再触发；重复提醒只更新 last_sent_at 与 trigger_at。
    recurrence_type 保存原始字符串，未知类型在触发时按 daily 处理。
    所有时间均为带时区的 UTC datetime。
    """
    title: Optional[str] = None
    body: str = ""
    trigger_at: Optional[datetime] = None
    recurring: bool = False
    recurrence_type: Optional[str] = None
    destination: Optional[str] = None  # 对调度器不透明, 仅由投递通道解释
    kind: str = NotificationKind.CUSTOM.value
    data: Dict[str, Any] = field(default_factory=dict)
    reminder_id: Optional[str] = None
    sent: bool = False
    sent_at: Optional[datetime] = None
    last_sent_at: Optional[datetime] = None
    invalid_token: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
