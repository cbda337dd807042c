import aiosqlite
import os
from pathlib import Path

from logger import logger


conn: aiosqlite.Connection | None = None

_SQL_DIR = Path(__file__).with_name("sql")


async def _column_exists(table: str, column: str) -> bool:
    global conn
    async with conn.execute(f"PRAGMA table_info({table})") as cursor:
        async for row in cursor:
            if row[1] == column:
                return True
    return False


async def init_db(db_path: str) -> None:
    """打开数据库连接并按 user_version 执行初始化/升级脚本。db_path 可为 ':memory:'"""
    global conn
    if db_path != ":memory:":
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
    conn = await aiosqlite.connect(db_path)

    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        user_version = row[0]

    if user_version == 0:
        init_sql = (_SQL_DIR / "db_init_v1.sql").read_text(encoding="utf-8")
        await conn.executescript(init_sql)
        await conn.execute("PRAGMA user_version = 1")
        logger.info(f"数据库已初始化: {db_path}")

    if user_version < 2:
        # v2: 投递失败时记录目标失效标记
        if not await _column_exists("reminders", "invalid_token"):
            await conn.execute("ALTER TABLE reminders ADD COLUMN invalid_token INTEGER NOT NULL DEFAULT 0")
        await conn.execute("PRAGMA user_version = 2")

    # 数据库升级逻辑可以在这里继续添加
    await conn.commit()


async def close_db() -> None:
    global conn
    if conn is not None:
        await conn.close()
        conn = None

__all__ = ["conn", "init_db", "close_db"]
