"""Telegram 推送通道

destination 为 chat id (数字或 @频道名), 为空时使用 PRIMARY_TELEGRAM_CHAT_ID。
Bot 被屏蔽、会话不存在或已迁移视为目标永久失效; 网络与限流错误视为可重试。
"""

from typing import Any, Dict, Optional

import telegram
from telegram.error import BadRequest, ChatMigrated, Forbidden, NetworkError, RetryAfter, TelegramError

from config.settings import PRIMARY_TELEGRAM_CHAT_ID, TELEGRAM_BOT_TOKEN
from logger import logger

from .base import ChannelType, DeliveryResult, DeliverySink

__all__ = ["TelegramSink"]

_INVALID_CHAT_HINTS = ("chat not found", "user not found", "peer_id_invalid")


def _to_chat_id(destination: str) -> int | str:
    destination = destination.strip()
    if destination.lstrip("-").isdigit():
        return int(destination)
    return destination


def _format_text(title: str, body: str) -> str:
    if body:
        return f"{title}\n{body}"
    return title


class TelegramSink(DeliverySink):
    channel_type = ChannelType.TELEGRAM

    def __init__(
        self,
        bot: telegram.Bot | None = None,
        token: str = TELEGRAM_BOT_TOKEN,
        default_chat_id: str = PRIMARY_TELEGRAM_CHAT_ID,
    ) -> None:
        self._bot = bot if bot is not None else telegram.Bot(token=token)
        self._default_chat_id = default_chat_id

    async def start(self) -> None:
        await self._bot.initialize()
        logger.info("Telegram 推送通道已就绪")

    async def close(self) -> None:
        await self._bot.shutdown()
        logger.info("Telegram 推送通道已关闭")

    async def deliver(
        self,
        title: str,
        body: str,
        destination: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        reminder_id = (metadata or {}).get("reminder_id", "-")
        target = (destination or "").strip() or self._default_chat_id
        if not target:
            logger.warning(f"提醒没有可用的 Telegram chat id: reminder_id={reminder_id}")
            return DeliveryResult.CHANNEL_INVALID

        try:
            await self._bot.send_message(chat_id=_to_chat_id(target), text=_format_text(title, body))
        except Forbidden as e:
            logger.warning(f"Telegram 目标拒绝接收(已屏蔽或被移出): chat_id={target}, reminder_id={reminder_id}, error={e}")
            return DeliveryResult.CHANNEL_INVALID
        except ChatMigrated as e:
            logger.warning(
                f"Telegram 会话已迁移: chat_id={target} -> {e.new_chat_id}, reminder_id={reminder_id}"
            )
            return DeliveryResult.CHANNEL_INVALID
        except BadRequest as e:
            if any(hint in str(e).lower() for hint in _INVALID_CHAT_HINTS):
                logger.warning(f"Telegram 会话不存在: chat_id={target}, reminder_id={reminder_id}, error={e}")
                return DeliveryResult.CHANNEL_INVALID
            logger.error(f"Telegram 请求被拒绝: chat_id={target}, reminder_id={reminder_id}, error={e}")
            return DeliveryResult.TRANSIENT_FAILURE
        except RetryAfter as e:
            logger.warning(f"Telegram 限流, {e.retry_after} 秒后可重试: reminder_id={reminder_id}")
            return DeliveryResult.TRANSIENT_FAILURE
        except NetworkError as e:
            logger.warning(f"Telegram 网络错误, 下一轮重试: reminder_id={reminder_id}, error={e}")
            return DeliveryResult.TRANSIENT_FAILURE
        except TelegramError as e:
            logger.error(f"Telegram 投递失败: reminder_id={reminder_id}, error={e}")
            return DeliveryResult.TRANSIENT_FAILURE

        logger.trace(f"Telegram 投递成功: chat_id={target}, reminder_id={reminder_id}")
        return DeliveryResult.DELIVERED
