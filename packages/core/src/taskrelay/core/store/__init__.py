"""taskrelay Core Store -- 任务记录存储

提供工厂函数按配置创建 TaskStore 实例（文件目录或 SQLite）。
"""

from pathlib import Path

import aiosqlite

from ..config import QueueSettings, get_db_path, get_tasks_dir
from .file_store import FileTaskStore
from .protocols import ClaimOutcome, TaskStore
from .sqlite_init import init_db, verify_wal_mode
from .sqlite_store import SqliteTaskStore


async def create_sqlite_task_store(db_path: str) -> SqliteTaskStore:
    """打开（必要时初始化）SQLite 任务存储

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        SqliteTaskStore 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    return SqliteTaskStore(conn)


async def create_task_store(
    settings: QueueSettings,
    tasks_dir: str | Path | None = None,
    db_path: str | None = None,
) -> TaskStore:
    """按 settings.store_backend 创建 TaskStore

    Args:
        settings: 队列配置
        tasks_dir: file 后端的任务目录，默认取 TASKRELAY_TASKS_DIR
        db_path: sqlite 后端的数据库路径，默认取 TASKRELAY_DB_PATH
    """
    if settings.store_backend == "sqlite":
        return await create_sqlite_task_store(db_path or get_db_path())
    return FileTaskStore(tasks_dir or get_tasks_dir())


__all__ = [
    "ClaimOutcome",
    "TaskStore",
    "FileTaskStore",
    "SqliteTaskStore",
    "create_task_store",
    "create_sqlite_task_store",
    "init_db",
    "verify_wal_mode",
]
