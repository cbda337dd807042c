from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

__all__ = ["ChannelType", "DeliveryResult", "DeliverySink"]


class ChannelType(str, Enum):
    LOG = "log"
    TELEGRAM = "telegram"


class DeliveryResult(str, Enum):
    DELIVERED = "delivered"
    CHANNEL_INVALID = "channel_invalid"  # 目标永久不可用, 例如设备已注销、用户屏蔽了 Bot
    TRANSIENT_FAILURE = "transient_failure"  # 可重试, 下一轮调度会再次投递


class DeliverySink(ABC):
    """投递通道: 负责把提醒真正送达用户。实现必须可以被并发调用"""

    channel_type: ChannelType

    async def start(self) -> None:
        """建立连接等准备工作, 默认无事可做"""

    async def close(self) -> None:
        """释放资源, 默认无事可做"""

    @abstractmethod
    async def deliver(
        self,
        title: str,
        body: str,
        destination: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        pass
