from __future__ import annotations

import asyncio
import contextlib
import time

import uvicorn
from config.settings import ADMIN_HTTP_HOST, ADMIN_HTTP_PORT
from logger import logger
from world.reminder import ReminderScheduler

from .app import create_app
from .schemas import RuntimeControl


def build_server(control: RuntimeControl, host: str = ADMIN_HTTP_HOST, port: int = ADMIN_HTTP_PORT) -> uvicorn.Server:
    config = uvicorn.Config(
        create_app(control),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    # 信号由 main.py 统一处理
    server.install_signal_handlers = lambda: None
    return server


async def main_loop(
    shutdown_event: asyncio.Event,
    scheduler: ReminderScheduler | None = None,
) -> None:
    """与调度循环共用一个事件循环运行管理 API, shutdown_event 被设置后退出"""
    control = RuntimeControl(shutdown_event=shutdown_event, started_at=time.time(), scheduler=scheduler)
    server = build_server(control)

    async def stop_on_shutdown() -> None:
        await shutdown_event.wait()
        logger.debug("管理 API 收到关闭信号")
        server.should_exit = True

    watcher = asyncio.create_task(stop_on_shutdown())
    logger.info(f"管理 API 监听于 http://{ADMIN_HTTP_HOST}:{ADMIN_HTTP_PORT}")
    try:
        await server.serve()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
        logger.info("管理 API 已停止")
