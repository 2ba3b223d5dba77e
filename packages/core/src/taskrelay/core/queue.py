"""TaskQueue -- 任务队列与锁管理

在 TaskStore 原子原语之上实现 create / list / get / claim / release / complete：
1. 记录名由 (type, subject) 决定，重复入队命中已有记录
2. 领取是单条记录上的原子读改写，同一时刻至多一个有效领取
3. 过期锁在读取时惰性计算，list 与 claim 使用同一判定
4. 每次成功的状态变化向 EventBus 发出对应事件

NOT_FOUND / ALREADY_CLAIMED / INVALID_INPUT 以结构化结果返回；
存储介质故障（OSError、aiosqlite.Error、TaskStoreError）向上传播。
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from .bus import EventBus
from .exceptions import CorruptTaskRecordError
from .keys import is_valid_task_name, parse_task_name, task_name
from .models import (
    ClaimTaskResult,
    CreateTaskResult,
    ErrorCode,
    EventType,
    TaskActionResult,
    TaskClaimedPayload,
    TaskCompletedPayload,
    TaskCreatedPayload,
    TaskRecord,
    TaskReleasedPayload,
    TaskStatus,
    TaskType,
)
from .store.protocols import TaskStore

log = structlog.get_logger()

# 默认锁过期阈值
DEFAULT_STALE_AFTER = timedelta(minutes=30)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TaskQueue:
    """任务队列"""

    def __init__(
        self,
        store: TaskStore,
        bus: EventBus | None = None,
        stale_after: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._stale_after = stale_after or DEFAULT_STALE_AFTER
        self._clock = clock or _utc_now

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    def _stale_before(self, now: datetime) -> datetime:
        return now - self._stale_after

    async def create_task(
        self,
        task_type: TaskType | str,
        subject: str,
        payload: dict[str, Any] | None = None,
    ) -> CreateTaskResult:
        """入队；同名记录已存在时返回 already_exists=True 且不做任何修改

        Args:
            task_type: 任务类型
            subject: 主题（公司名或 slug）
            payload: 任务类型相关的主题数据
        """
        try:
            task_type = TaskType(task_type)
        except ValueError:
            return CreateTaskResult.failure(
                ErrorCode.INVALID_INPUT,
                f"未知任务类型: {task_type}",
            )
        try:
            name = task_name(task_type, subject)
        except ValueError:
            return CreateTaskResult.failure(
                ErrorCode.INVALID_INPUT,
                f"主题无法生成记录名: {subject!r}",
            )

        parsed = parse_task_name(name)
        subject_key = parsed[1] if parsed else name.removesuffix(".json")
        record = TaskRecord(
            name=name,
            type=task_type,
            subject_key=subject_key,
            status=TaskStatus.PENDING,
            created_at=self._clock(),
            payload=dict(payload or {}),
        )

        created = await self._store.create_if_absent(record)
        if not created:
            existing = await self._store.get(name)
            log.debug("task_already_exists", task_name=name)
            return CreateTaskResult(
                success=True,
                name=name,
                already_exists=True,
                task=existing,
                message="任务已存在",
            )

        log.info("task_created", task_name=name, task_type=task_type.value)
        await self._emit(EventType.TASK_CREATED, TaskCreatedPayload.from_task(record))
        return CreateTaskResult(success=True, name=name, task=record)

    async def list_tasks(
        self,
        task_type: TaskType | str | None = None,
        status: TaskStatus | str | None = None,
        include_stale: bool = True,
    ) -> list[TaskRecord]:
        """列出任务，按 created_at 升序（FIFO），同时间按记录名

        include_stale 时，过期的 in_progress 记录按 pending 报告并标记
        is_stale=True；存储中的记录不被修改。
        """
        stale_before = self._stale_before(self._clock())
        tasks = []
        for record in await self._store.scan():
            if task_type is not None and record.type != task_type:
                continue
            view = record
            if include_stale and record.is_lock_stale(stale_before):
                view = record.model_copy(
                    update={"status": TaskStatus.PENDING, "is_stale": True}
                )
            if status is not None and view.status != status:
                continue
            tasks.append(view)

        tasks.sort(key=lambda t: (t.created_at, t.name))
        return tasks

    async def get_task(self, name: str) -> TaskRecord | None:
        """读取原始记录；名字非法或不存在时返回 None"""
        if not is_valid_task_name(name):
            return None
        return await self._store.get(name)

    async def claim_task(
        self,
        name: str,
        worker_id: str | None = None,
    ) -> ClaimTaskResult:
        """领取任务

        记录为 pending，或 in_progress 但已过期时领取成功，返回领取后的完整记录；
        否则返回 ALREADY_CLAIMED 及当前持有者信息。
        """
        if not is_valid_task_name(name):
            return ClaimTaskResult.failure(
                ErrorCode.INVALID_INPUT, f"非法任务名: {name!r}", name=name
            )

        now = self._clock()
        outcome = await self._store.compare_and_swap_claim(
            name,
            worker_id,
            now=now,
            stale_before=self._stale_before(now),
        )

        if outcome.state == "missing":
            return ClaimTaskResult.failure(
                ErrorCode.NOT_FOUND, f"任务不存在: {name}", name=name
            )

        if outcome.state == "held":
            holder = outcome.record
            return ClaimTaskResult.failure(
                ErrorCode.ALREADY_CLAIMED,
                f"任务已被 {holder.claimed_by or '未知 worker'} 领取",
                name=name,
                claimed_by=holder.claimed_by,
                claimed_at=holder.claimed_at,
            )

        previous = outcome.previous
        reclaimed_stale = previous is not None and previous.status == TaskStatus.IN_PROGRESS
        if reclaimed_stale:
            log.warning(
                "stale_lock_reclaimed",
                task_name=name,
                previous_claimant=previous.claimed_by,
                lock_age_s=previous.lock_age_seconds(now),
                worker_id=worker_id,
            )
        else:
            log.info("task_claimed", task_name=name, worker_id=worker_id)

        claimed = outcome.record
        await self._emit(
            EventType.TASK_CLAIMED,
            TaskClaimedPayload.from_task(
                claimed,
                worker_id=worker_id,
                reclaimed_stale=reclaimed_stale,
            ),
        )
        return ClaimTaskResult(
            success=True,
            name=name,
            task=claimed,
            claimed_by=claimed.claimed_by,
            claimed_at=claimed.claimed_at,
        )

    async def release_task(self, name: str) -> TaskActionResult:
        """释放任务回 pending，不校验持有者；已是 pending 时无状态变化"""
        if not is_valid_task_name(name):
            return TaskActionResult.failure(
                ErrorCode.INVALID_INPUT, f"非法任务名: {name!r}", name=name
            )

        previous = await self._store.release(name)
        if previous is None:
            return TaskActionResult.failure(
                ErrorCode.NOT_FOUND, f"任务不存在: {name}", name=name
            )

        released = previous.model_copy(
            update={"status": TaskStatus.PENDING, "claimed_at": None, "claimed_by": None}
        )
        if previous.status == TaskStatus.PENDING and previous.claimed_by is None:
            log.debug("task_already_pending", task_name=name)
            return TaskActionResult(success=True, name=name, task=released)

        log.info(
            "task_released",
            task_name=name,
            previous_claimant=previous.claimed_by,
        )
        await self._emit(
            EventType.TASK_RELEASED,
            TaskReleasedPayload.from_task(
                released, previous_claimant=previous.claimed_by
            ),
        )
        return TaskActionResult(success=True, name=name, task=released)

    async def complete_task(
        self,
        name: str,
        tokens: dict[str, Any] | None = None,
    ) -> TaskActionResult:
        """完成任务：删除记录，并以删除前的内容发出 task.completed

        Args:
            name: 任务记录名
            tokens: 可选的 token 用量，随事件透传
        """
        if not is_valid_task_name(name):
            return TaskActionResult.failure(
                ErrorCode.INVALID_INPUT, f"非法任务名: {name!r}", name=name
            )

        try:
            removed = await self._store.delete(name)
        except CorruptTaskRecordError as e:
            return await self._complete_corrupt(name, e, tokens)
        if removed is None:
            return TaskActionResult.failure(
                ErrorCode.NOT_FOUND, f"任务不存在: {name}", name=name
            )

        log.info(
            "task_completed",
            task_name=name,
            task_type=removed.type.value,
            claimed_by=removed.claimed_by,
        )
        await self._emit(
            EventType.TASK_COMPLETED,
            TaskCompletedPayload.from_task(removed, tokens=tokens),
        )
        return TaskActionResult(success=True, name=name, task=removed)

    async def _complete_corrupt(
        self,
        name: str,
        error: CorruptTaskRecordError,
        tokens: dict[str, Any] | None,
    ) -> TaskActionResult:
        """完成一条无法解析的记录：不读内容直接删除，事件字段从记录名反推"""
        if not await self._store.discard(name):
            return TaskActionResult.failure(
                ErrorCode.NOT_FOUND, f"任务不存在: {name}", name=name
            )

        log.warning(
            "corrupt_task_record_discarded",
            task_name=name,
            error=str(error.original_error),
        )
        parsed = parse_task_name(name)
        task_type, subject_key = (
            (parsed[0].value, parsed[1]) if parsed else ("", name.removesuffix(".json"))
        )
        await self._emit(
            EventType.TASK_COMPLETED,
            TaskCompletedPayload(
                name=name,
                type=task_type,
                subject_key=subject_key,
                tokens=tokens,
            ),
        )
        return TaskActionResult(success=True, name=name, task=None)

    async def release_stale_tasks(self) -> list[str]:
        """释放全部过期锁，返回被释放的记录名

        只在显式调用时执行（CLI / 运维），队列本身不做后台清扫。
        """
        stale_before = self._stale_before(self._clock())
        released = []
        for record in await self._store.scan():
            if not record.is_lock_stale(stale_before):
                continue
            result = await self.release_task(record.name)
            if result.success:
                released.append(record.name)

        if released:
            log.warning("stale_tasks_released", count=len(released), names=released)
        return released

    async def _emit(self, event_type: EventType, payload) -> None:
        if self._bus is None:
            return
        await self._bus.emit(event_type, payload.model_dump(mode="json"))
