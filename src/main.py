from logger import setup_logging, logger
from config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE or None,
    console_level=CONSOLE_LOG_LEVEL,
)

import asyncio
import signal

from admin.http_server import main_loop as admin_http_main
from channels.base import DeliverySink
from datamodel import ReminderRecord
from events import bus, E
import storage.db_config as db_config
from world.reminder import ReminderScheduler

shutdown_event = asyncio.Event()

def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


@bus.on(E.REMINDER_CHANNEL_INVALID)
async def report_invalid_destination(reminder: ReminderRecord) -> None:
    """目标失效的提醒不会被自动删除, 这里只负责提示人工处理"""
    logger.warning(
        f"提醒的投递目标已失效, 请更换 destination 或删除该提醒: "
        f"reminder_id={reminder.reminder_id}, title={reminder.title}, destination={reminder.destination}"
    )


def _create_sink() -> DeliverySink:
    """根据配置创建投递通道"""
    if DELIVERY_CHANNEL == "telegram":
        from channels.telegram_push import TelegramSink

        return TelegramSink()

    if DELIVERY_CHANNEL == "log":
        from channels.log_sink import LogSink

        return LogSink()

    raise ValueError(f"不支持的投递通道: {DELIVERY_CHANNEL}")


async def main():
    # 注册信号处理器
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await db_config.init_db(DB_PATH)

    sink = _create_sink()
    scheduler = ReminderScheduler(sink=sink)

    try:
        await sink.start()
        tasks = [scheduler.run(shutdown_event)]

        if ADMIN_HTTP_ENABLED:
            tasks.append(admin_http_main(shutdown_event, scheduler))
        else:
            logger.warning("Admin HTTP 服务已禁用")

        await asyncio.gather(*tasks)
    finally:
        logger.info("关闭 Nudge...")

        try:
            await sink.close()
        finally:
            logger.info("关闭数据库连接...")
            await db_config.close_db()
            logger.info("Nudge 已关闭")


if __name__ == "__main__":
    logger.info("启动 Nudge...")
    asyncio.run(main())
