from typing import Any, Dict, Optional

from logger import logger

from .base import ChannelType, DeliveryResult, DeliverySink

__all__ = ["LogSink"]


class LogSink(DeliverySink):
    """把提醒写入日志, 未配置推送通道时使用"""

    channel_type = ChannelType.LOG

    async def deliver(
        self,
        title: str,
        body: str,
        destination: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        metadata = metadata or {}
        logger.info(
            f"[提醒] {title} - {body} "
            f"(destination={destination or '-'}, reminder_id={metadata.get('reminder_id', '-')})"
        )
        return DeliveryResult.DELIVERED
