"""Tests for process start-up and shutdown ordering."""

from __future__ import annotations

import signal

import pytest

import storage.db_config as db_config

from tests.conftest import FakeSink


class UnreachableSink(FakeSink):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    async def start(self) -> None:
        raise ConnectionError("telegram api unreachable")

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_database_closed_when_sink_fails_to_start(monkeypatch) -> None:
    import main

    sink = UnreachableSink()
    monkeypatch.setattr(signal, "signal", lambda *args: None)
    monkeypatch.setattr(main, "DB_PATH", ":memory:")
    monkeypatch.setattr(main, "_create_sink", lambda: sink)

    with pytest.raises(ConnectionError):
        await main.main()

    assert sink.closed is True
    assert db_config.conn is None
