"""全局 pytest 配置 -- 临时任务目录 / SQLite 路径 + 可控时钟"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest


class FakeClock:
    """可手动推进的时钟，注入 TaskQueue / EventBus"""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """固定起点的可推进时钟"""
    return FakeClock()


@pytest.fixture
def tmp_tasks_dir(tmp_path: Path) -> Path:
    """提供临时任务目录"""
    tasks_dir = tmp_path / "tasks"
    tasks_dir.mkdir(parents=True, exist_ok=True)
    return tasks_dir


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"
