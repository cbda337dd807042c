"""
一个简单的运行时指标收集类，用于统计调度轮次、投递结果与清理数量，方便后续扩展和监控。
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RuntimeMetrics:
    tick_count: int = 0
    tick_skipped_count: int = 0
    tick_total_latency_ms: float = 0.0
    due_count: int = 0
    delivered_count: int = 0
    rescheduled_count: int = 0
    channel_invalid_count: int = 0
    delivery_failed_count: int = 0
    cleaned_count: int = 0
    last_tick_at: float | None = None

    def record_tick(self, latency_ms: float, due: int) -> None:
        self.tick_count += 1
        self.tick_total_latency_ms += max(0.0, latency_ms)
        self.due_count += due
        self.last_tick_at = time.time()

    def record_tick_skipped(self) -> None:
        self.tick_skipped_count += 1

    def record_delivered(self, rescheduled: bool) -> None:
        self.delivered_count += 1
        if rescheduled:
            self.rescheduled_count += 1

    def record_channel_invalid(self) -> None:
        self.channel_invalid_count += 1

    def record_delivery_failed(self) -> None:
        self.delivery_failed_count += 1

    def record_cleaned(self, count: int) -> None:
        self.cleaned_count += max(0, count)

    def snapshot(self) -> dict:
        avg_latency_ms = 0.0
        if self.tick_count > 0:
            avg_latency_ms = self.tick_total_latency_ms / self.tick_count

        return {
            "tick_count": self.tick_count,
            "tick_skipped_count": self.tick_skipped_count,
            "tick_avg_latency_ms": round(avg_latency_ms, 2),
            "due_count": self.due_count,
            "delivered_count": self.delivered_count,
            "rescheduled_count": self.rescheduled_count,
            "channel_invalid_count": self.channel_invalid_count,
            "delivery_failed_count": self.delivery_failed_count,
            "cleaned_count": self.cleaned_count,
            "last_tick_at_epoch": self.last_tick_at,
            "last_tick_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_tick_at))
                if self.last_tick_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
