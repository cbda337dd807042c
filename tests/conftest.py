"""Shared fixtures: in-memory SQLite store, a scriptable delivery sink and a fixed clock."""

from __future__ import annotations

import os

# Settings are read at import time, pin them before any project module loads.
os.environ["ADMIN_AUTH_TOKEN"] = "test-token"
os.environ["DELIVERY_CHANNEL"] = "log"
os.environ["USER_TIMEZONE"] = "UTC"
os.environ["LOG_FILE"] = ""

from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio

import storage.db_config as db_config
from channels.base import ChannelType, DeliveryResult, DeliverySink

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeSink(DeliverySink):
    """Returns scripted results per title; an Exception instance is raised instead."""

    channel_type = ChannelType.LOG

    def __init__(
        self,
        results: dict[str, DeliveryResult | Exception] | None = None,
        default: DeliveryResult = DeliveryResult.DELIVERED,
    ) -> None:
        self.results = results or {}
        self.default = default
        self.calls: list[tuple[str, str, str | None, dict[str, Any] | None]] = []

    async def deliver(self, title, body, destination, metadata=None):
        self.calls.append((title, body, destination, metadata))
        outcome = self.results.get(title, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def titles(self) -> list[str]:
        return [call[0] for call in self.calls]


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest_asyncio.fixture
async def db():
    await db_config.init_db(":memory:")
    yield db_config.conn
    await db_config.close_db()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()
