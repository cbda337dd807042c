"""重复提醒的下次触发时间推算

daily/weekly/weekdays 按用户时区的墙上时间做日历加法(跨月、闰年、夏令时由 zoneinfo 处理)，
hourly 按绝对时间加一小时。结果总是严格晚于输入。
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from datamodel import RecurrenceType
from logger import logger
from utils import ensure_utc

__all__ = ["next_trigger", "resolve_rule"]

_ONE_DAY = timedelta(days=1)


def resolve_rule(rule: str | RecurrenceType | None) -> RecurrenceType:
    """把记录里保存的重复类型解析为枚举, 未知值回退为 daily"""
    if isinstance(rule, RecurrenceType):
        return rule
    try:
        return RecurrenceType(str(rule).strip().lower())
    except ValueError:
        logger.warning(f"未知的重复类型: {rule!r}, 按 daily 处理")
        return RecurrenceType.DAILY


def _zone(tz: str | tzinfo) -> tzinfo:
    return ZoneInfo(tz) if isinstance(tz, str) else tz


def next_trigger(
    current: datetime,
    rule: str | RecurrenceType | None,
    tz: str | tzinfo = "UTC",
) -> datetime:
    """根据当前触发时间与重复类型计算下次触发时间, 返回 UTC datetime"""
    current = ensure_utc(current)
    recurrence = resolve_rule(rule)

    if recurrence is RecurrenceType.HOURLY:
        return current + timedelta(hours=1)

    # 带 ZoneInfo 的 datetime 加 timedelta 是墙上时间加法
    local = current.astimezone(_zone(tz))
    if recurrence is RecurrenceType.WEEKLY:
        local = local + timedelta(days=7)
    elif recurrence is RecurrenceType.WEEKDAYS:
        local = local + _ONE_DAY
        while local.weekday() >= 5:  # 周六、周日
            local = local + _ONE_DAY
    else:
        local = local + _ONE_DAY

    return local.astimezone(timezone.utc)
