from datetime import datetime, timezone
from zoneinfo import ZoneInfo

__all__ = ["now_utc", "ensure_utc", "to_db_ts", "from_db_ts", "utc_to_user_local_min", "user_local_now"]

# 定宽格式, 保证数据库中的字符串比较与时间先后一致
DB_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """无时区的 datetime 视为 UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db_ts(dt: datetime) -> str:
    return ensure_utc(dt).strftime(DB_TS_FORMAT)


def from_db_ts(raw: str | None) -> datetime | None:
    if raw is None or raw == "":
        return None
    return datetime.strptime(raw, DB_TS_FORMAT).replace(tzinfo=timezone.utc)


def utc_to_user_local_min(utc_dt: datetime, user_tz: str) -> str:
    local_dt = ensure_utc(utc_dt).astimezone(ZoneInfo(user_tz))
    return local_dt.strftime("%Y-%m-%d %H:%M")


def user_local_now(user_tz: str, now: datetime | None = None) -> datetime:
    return ensure_utc(now or now_utc()).astimezone(ZoneInfo(user_tz))
