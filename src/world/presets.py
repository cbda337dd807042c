"""常用提醒模板: 任务开始前提醒, 以及每日固定时间的习惯/晨间/晚间/复盘提醒"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from datamodel import NotificationKind, RecurrenceType, ReminderRecord, ReminderValidationError
from utils import ensure_utc, now_utc, user_local_now

__all__ = ["build_task_reminder", "build_routine_reminder", "ROUTINE_KINDS"]

_TIME_OF_DAY_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

# kind -> (title, body); 习惯提醒的标题包含习惯名
_ROUTINE_TEMPLATES: dict[NotificationKind, tuple[str, str]] = {
    NotificationKind.HABIT_REMINDER: ("🔥 Time for: {habit}", "Keep your streak going!"),
    NotificationKind.MORNING_ROUTINE: ("🌅 Good Morning!", "Time to start your morning routine"),
    NotificationKind.NIGHT_ROUTINE: ("🌙 Wind Down Time", "Start your nighttime routine"),
    NotificationKind.REFLECTION_PROMPT: ("✨ Daily Reflection", "Take a moment to reflect on your day"),
}

ROUTINE_KINDS = frozenset(kind.value for kind in _ROUTINE_TEMPLATES)


def build_task_reminder(
    task_title: str,
    starts_at: datetime,
    minutes_before: int = 15,
    priority: str | None = None,
    task_id: str | None = None,
    destination: str | None = None,
    now: datetime | None = None,
) -> ReminderRecord | None:
    """任务开始前 minutes_before 分钟的一次性提醒。触发时间已过则返回 None"""
    if minutes_before < 0:
        raise ReminderValidationError("minutes_before 不能为负数")
    trigger_at = ensure_utc(starts_at) - timedelta(minutes=minutes_before)
    if trigger_at <= ensure_utc(now or now_utc()):
        return None

    data: dict[str, object] = {"sound": "urgent" if priority == "high" else "default"}
    if task_id is not None:
        data["task_id"] = task_id

    return ReminderRecord(
        kind=NotificationKind.TASK_REMINDER.value,
        title=f"⏰ {task_title}",
        body=f"Starting in {minutes_before} minutes",
        trigger_at=trigger_at,
        destination=destination,
        data=data,
    )


def _parse_time_of_day(time_of_day: str) -> tuple[int, int]:
    match = _TIME_OF_DAY_PATTERN.match(time_of_day.strip()) if isinstance(time_of_day, str) else None
    if match is None:
        raise ReminderValidationError(f"无效的时间格式: {time_of_day!r}，预期格式为 HH:MM")
    return int(match.group(1)), int(match.group(2))


def build_routine_reminder(
    kind: str | NotificationKind,
    time_of_day: str,
    tz: str,
    habit_title: str | None = None,
    destination: str | None = None,
    now: datetime | None = None,
) -> ReminderRecord:
    """每天 time_of_day(用户时区)触发的重复提醒; 今天的时间已过则从明天开始"""
    try:
        routine = NotificationKind(kind)
    except ValueError:
        routine = None
    if routine not in _ROUTINE_TEMPLATES:
        raise ReminderValidationError(f"不支持的日常提醒类型: {kind}")
    if routine is NotificationKind.HABIT_REMINDER and not (habit_title or "").strip():
        raise ReminderValidationError("习惯提醒需要 habit_title")

    hour, minute = _parse_time_of_day(time_of_day)
    local_now = user_local_now(tz, now)
    trigger_local = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if trigger_local <= local_now:
        trigger_local = trigger_local + timedelta(days=1)

    title, body = _ROUTINE_TEMPLATES[routine]
    data: dict[str, object] = {"sound": "gentle"}
    if habit_title:
        data["habit"] = habit_title.strip()

    return ReminderRecord(
        kind=routine.value,
        title=title.format(habit=(habit_title or "").strip()),
        body=body,
        trigger_at=ensure_utc(trigger_local),
        recurring=True,
        recurrence_type=RecurrenceType.DAILY.value,
        destination=destination,
        data=data,
    )
