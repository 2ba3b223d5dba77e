"""packages/core 测试配置 -- 核心层 fixture

task_store 在 file / sqlite 两个后端上参数化，同一组契约测试覆盖两种实现。
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from taskrelay.core.bus import EventBus
from taskrelay.core.queue import TaskQueue
from taskrelay.core.store import FileTaskStore, TaskStore, create_sqlite_task_store


@pytest_asyncio.fixture(params=["file", "sqlite"])
async def task_store(
    request: pytest.FixtureRequest,
    tmp_tasks_dir: Path,
    tmp_db_path: Path,
) -> AsyncGenerator[TaskStore, None]:
    """两种后端的 TaskStore"""
    if request.param == "file":
        store = FileTaskStore(tmp_tasks_dir)
    else:
        store = await create_sqlite_task_store(str(tmp_db_path))
    yield store
    await store.close()


@pytest_asyncio.fixture
async def event_bus(clock) -> AsyncGenerator[EventBus, None]:
    """使用可控时钟的事件总线"""
    bus = EventBus(clock=clock)
    yield bus
    await bus.aclose()


@pytest.fixture
def task_queue(task_store: TaskStore, event_bus: EventBus, clock) -> TaskQueue:
    """挂载事件总线的任务队列"""
    return TaskQueue(task_store, bus=event_bus, clock=clock)
