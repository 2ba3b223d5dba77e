"""记录级文件锁 -- 基于 O_CREAT|O_EXCL 独占创建

同一记录的每次读改写都在 <name>.lock 存在期间完成。独占创建在本地
文件系统上跨进程原子；等待方用 asyncio.sleep 退避，不阻塞事件循环。
锁文件超过 break_after 秒仍存在，视为持有进程在临界区内崩溃，强制删除。
"""

import asyncio
import os
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog

log = structlog.get_logger()

_RETRY_INTERVAL_S = 0.005
_MAX_RETRY_INTERVAL_S = 0.1


def _try_create(lock_path: Path) -> bool:
    """尝试独占创建锁文件，成功返回 True"""
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    try:
        os.write(fd, f"{os.getpid()}\n".encode())
    finally:
        os.close(fd)
    return True


def _break_if_abandoned(lock_path: Path, break_after: float) -> bool:
    """锁文件超时则删除，返回是否删除"""
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        # 持有者刚刚释放
        return True
    if age < break_after:
        return False
    try:
        lock_path.unlink()
    except FileNotFoundError:
        return True
    log.warning(
        "record_lock_broken",
        lock_path=str(lock_path),
        age_s=round(age, 3),
    )
    return True


@asynccontextmanager
async def record_lock(lock_path: Path, break_after: float) -> AsyncIterator[None]:
    """持有记录锁执行临界区

    Args:
        lock_path: 锁文件路径（与记录同目录）
        break_after: 锁文件被视为遗弃的秒数
    """
    delay = _RETRY_INTERVAL_S
    while not _try_create(lock_path):
        if _break_if_abandoned(lock_path, break_after):
            continue
        await asyncio.sleep(delay)
        delay = min(delay * 2, _MAX_RETRY_INTERVAL_S)

    try:
        yield
    finally:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            # 被其他进程按超时打破，临界区本身已完成
            log.warning("record_lock_already_removed", lock_path=str(lock_path))
