import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from logger import logger
load_dotenv()

__all__ = [
    "USER_TIMEZONE",
    "DB_PATH", "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL",
    "REMINDER_TICK_SECONDS", "REMINDER_CLEANUP_INTERVAL_SECONDS", "REMINDER_RETENTION_DAYS",
    "DELIVERY_CHANNEL", "TELEGRAM_BOT_TOKEN", "PRIMARY_TELEGRAM_CHAT_ID",
    "ADMIN_HTTP_ENABLED", "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_float(name: str, default: float, minimum: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default
    if value < minimum:
        logger.warning(f"{name} 不能小于 {minimum}, 已回退到 {default}")
        return default
    return value


# 用户时区, 重复提醒按该时区的墙上时间推算
USER_TIMEZONE = os.getenv("USER_TIMEZONE", "UTC").strip() or "UTC"
try:
    ZoneInfo(USER_TIMEZONE)
except (ZoneInfoNotFoundError, ValueError):
    logger.warning(f"USER_TIMEZONE 非法: {USER_TIMEZONE}, 已回退到 UTC")
    USER_TIMEZONE = "UTC"


# 存储与日志
DB_PATH = os.getenv("DB_PATH", "data/nudge.db")
LOG_FILE = os.getenv("LOG_FILE", "logs/nudge.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "TRACE").strip().upper()
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO").strip().upper()


# 调度参数
REMINDER_TICK_SECONDS = _parse_float("REMINDER_TICK_SECONDS", 60.0, minimum=1.0)
REMINDER_CLEANUP_INTERVAL_SECONDS = _parse_float("REMINDER_CLEANUP_INTERVAL_SECONDS", 86400.0, minimum=60.0)
REMINDER_RETENTION_DAYS = _parse_float("REMINDER_RETENTION_DAYS", 30.0, minimum=0.0)


# 投递通道: "log" 或 "telegram"
DELIVERY_CHANNEL = os.getenv("DELIVERY_CHANNEL", "log").strip().lower()
if DELIVERY_CHANNEL not in ("log", "telegram"):
    logger.critical(f"DELIVERY_CHANNEL 非法: {DELIVERY_CHANNEL}, 仅支持 log 或 telegram")
    sys.exit(1)

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
if DELIVERY_CHANNEL == "telegram" and TELEGRAM_BOT_TOKEN == "":
    logger.critical("DELIVERY_CHANNEL=telegram, 但 TELEGRAM_BOT_TOKEN 未设置")
    sys.exit(1)

PRIMARY_TELEGRAM_CHAT_ID = os.getenv("PRIMARY_TELEGRAM_CHAT_ID", "").strip()
if DELIVERY_CHANNEL == "telegram" and PRIMARY_TELEGRAM_CHAT_ID == "":
    logger.warning("未设置 PRIMARY_TELEGRAM_CHAT_ID, 未指定 destination 的提醒将无法投递")


# Admin API
ADMIN_HTTP_ENABLED = _parse_bool("ADMIN_HTTP_ENABLED", True)
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = int(os.getenv("ADMIN_HTTP_PORT", "18080"))
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")
