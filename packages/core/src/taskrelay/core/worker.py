"""Worker 辅助函数 -- 领取 / 处理 / 完成循环的单步实现

worker 主循环只需反复调用 process_next：抢到任务则处理并完成，
抢不到（ALREADY_CLAIMED）时静默换下一个，没有可领取任务时返回 None。
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from .models import ErrorCode, TaskRecord, TaskStatus, TaskType
from .queue import TaskQueue

log = structlog.get_logger()

TaskHandler = Callable[[TaskRecord], Awaitable[dict[str, Any] | None]]


async def claim_next(
    queue: TaskQueue,
    worker_id: str,
    task_type: TaskType | str | None = None,
) -> TaskRecord | None:
    """按 FIFO 顺序领取第一个能抢到的 pending 任务（含过期锁）

    Returns:
        领取后的记录；没有可领取任务时返回 None
    """
    candidates = await queue.list_tasks(
        task_type=task_type,
        status=TaskStatus.PENDING,
        include_stale=True,
    )
    for candidate in candidates:
        result = await queue.claim_task(candidate.name, worker_id)
        if result.success:
            return result.task
        if result.error in (ErrorCode.ALREADY_CLAIMED, ErrorCode.NOT_FOUND):
            # 被其他 worker 抢先领取或完成
            log.debug(
                "claim_skipped",
                task_name=candidate.name,
                worker_id=worker_id,
                reason=result.error.value,
            )
            continue
        log.warning(
            "claim_failed",
            task_name=candidate.name,
            worker_id=worker_id,
            error=result.error,
            message=result.message,
        )
    return None


async def process_next(
    queue: TaskQueue,
    handler: TaskHandler,
    worker_id: str,
    task_type: TaskType | str | None = None,
) -> TaskRecord | None:
    """领取一个任务并交给 handler 处理

    handler 正常返回时完成任务（返回值作为 tokens 随 task.completed 透传）；
    handler 抛出异常时释放任务并重新抛出，任务回到 pending 等待重试。

    Returns:
        已处理的记录；没有可领取任务时返回 None
    """
    task = await claim_next(queue, worker_id, task_type)
    if task is None:
        return None

    try:
        tokens = await handler(task)
    except Exception:
        log.warning(
            "task_handler_failed",
            task_name=task.name,
            worker_id=worker_id,
            exc_info=True,
        )
        await queue.release_task(task.name)
        raise

    result = await queue.complete_task(task.name, tokens=tokens)
    if not result.success:
        # 处理期间锁过期并被释放/完成
        log.warning(
            "task_complete_failed",
            task_name=task.name,
            worker_id=worker_id,
            error=result.error,
        )
    return task
