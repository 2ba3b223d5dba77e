"""CLI 入口模块 -- python -m taskrelay.core <command>

支持的命令：
  list-tasks     列出任务队列（含过期锁标记）
  release-stale  释放全部过期锁

CLI 在独立进程中运行，自带的 EventBus 只在本进程可见：
release-stale 产生的 task.released 事件不会到达网关进程的订阅者。
"""

import asyncio
import sys

from .config import get_db_path, get_tasks_dir, load_queue_settings
from .queue import TaskQueue
from .store import create_task_store

_COMMANDS = {
    "list-tasks": "列出任务队列（含过期锁标记）",
    "release-stale": "释放全部过期锁",
}


def _print_usage() -> None:
    print("用法: python -m taskrelay.core <command>")
    print("命令:")
    for name, description in _COMMANDS.items():
        print(f"  {name:<14} {description}")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        _print_usage()
        sys.exit(1)

    command = sys.argv[1]

    if command == "list-tasks":
        asyncio.run(list_tasks())
    elif command == "release-stale":
        asyncio.run(release_stale())
    else:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)


async def _open_queue() -> TaskQueue:
    settings = load_queue_settings()
    if settings.store_backend == "sqlite":
        print(f"数据库路径: {get_db_path()}")
    else:
        print(f"任务目录: {get_tasks_dir()}")
    store = await create_task_store(settings)
    return TaskQueue(store, stale_after=settings.stale_after)


async def list_tasks() -> None:
    """打印队列（FIFO 顺序）"""
    queue = await _open_queue()
    try:
        tasks = await queue.list_tasks(include_stale=True)
        if not tasks:
            print("队列为空")
            return
        for task in tasks:
            claimant = task.claimed_by or "-"
            stale = " (stale)" if task.is_stale else ""
            print(f"{task.name:<48} {task.status.value:<12} {claimant}{stale}")
        print(f"共 {len(tasks)} 个任务")
    finally:
        await queue.store.close()


async def release_stale() -> None:
    """释放全部过期锁"""
    queue = await _open_queue()
    try:
        released = await queue.release_stale_tasks()
        for name in released:
            print(f"已释放: {name}")
        print(f"释放完成，共 {len(released)} 个过期锁")
    finally:
        await queue.store.close()


if __name__ == "__main__":
    main()
