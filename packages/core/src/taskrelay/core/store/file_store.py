"""TaskStore 文件系统实现

一个任务一个 JSON 文件，目录列表即队列。
写入采用临时文件 + fsync + os.replace，读者永远看不到半截记录；
读改写由 record_lock 串行化（跨进程）。
"""

import json
import os
from datetime import datetime
from pathlib import Path

import structlog
from pydantic import ValidationError
from ulid import ULID

from ..config import RECORD_LOCK_BREAK_SECONDS
from ..exceptions import CorruptTaskRecordError, TaskStoreError
from ..models.enums import TaskStatus
from ..models.task import TaskRecord
from .protocols import ClaimOutcome
from .record_lock import record_lock

log = structlog.get_logger()


class FileTaskStore:
    """TaskStore 的文件系统实现"""

    def __init__(
        self,
        tasks_dir: str | Path,
        lock_break_seconds: float = RECORD_LOCK_BREAK_SECONDS,
    ) -> None:
        self._tasks_dir = Path(tasks_dir)
        self._tasks_dir.mkdir(parents=True, exist_ok=True)
        self._lock_break_seconds = lock_break_seconds

    @property
    def tasks_dir(self) -> Path:
        return self._tasks_dir

    async def create_if_absent(self, record: TaskRecord) -> bool:
        path = self._path(record.name)
        async with self._lock(record.name):
            if path.exists():
                return False
            self._write(path, record)
        return True

    async def get(self, name: str) -> TaskRecord | None:
        return self._read(self._path(name))

    async def scan(self) -> list[TaskRecord]:
        """读取目录下全部 *.json 记录，损坏的记录跳过并记录 warning"""
        records = []
        for path in sorted(self._tasks_dir.glob("*.json")):
            try:
                record = self._read(path)
            except CorruptTaskRecordError as e:
                log.warning(
                    "corrupt_task_record_skipped",
                    name=path.name,
                    error=str(e.original_error),
                )
                continue
            if record is not None:
                records.append(record)
        return records

    async def compare_and_swap_claim(
        self,
        name: str,
        worker_id: str | None,
        now: datetime,
        stale_before: datetime,
    ) -> ClaimOutcome:
        path = self._path(name)
        async with self._lock(name):
            current = self._read(path)
            if current is None:
                return ClaimOutcome(state="missing")
            if current.status == TaskStatus.IN_PROGRESS and not current.is_lock_stale(
                stale_before
            ):
                return ClaimOutcome(state="held", record=current)

            claimed = current.model_copy(
                update={
                    "status": TaskStatus.IN_PROGRESS,
                    "claimed_at": now,
                    "claimed_by": worker_id,
                }
            )
            self._write(path, claimed)
        return ClaimOutcome(state="claimed", record=claimed, previous=current)

    async def release(self, name: str) -> TaskRecord | None:
        path = self._path(name)
        async with self._lock(name):
            current = self._read(path)
            if current is None:
                return None
            if (
                current.status != TaskStatus.PENDING
                or current.claimed_at is not None
                or current.claimed_by is not None
            ):
                self._write(
                    path,
                    current.model_copy(
                        update={
                            "status": TaskStatus.PENDING,
                            "claimed_at": None,
                            "claimed_by": None,
                        }
                    ),
                )
        return current

    async def delete(self, name: str) -> TaskRecord | None:
        path = self._path(name)
        async with self._lock(name):
            current = self._read(path)
            if current is None:
                return None
            path.unlink()
        return current

    async def discard(self, name: str) -> bool:
        path = self._path(name)
        async with self._lock(name):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True

    async def ping(self) -> None:
        if not self._tasks_dir.is_dir():
            raise TaskStoreError(f"任务目录不存在: {self._tasks_dir}")
        if not os.access(self._tasks_dir, os.W_OK):
            raise TaskStoreError(f"任务目录不可写: {self._tasks_dir}")

    async def close(self) -> None:
        return None

    def _path(self, name: str) -> Path:
        return self._tasks_dir / name

    def _lock(self, name: str):
        return record_lock(
            self._tasks_dir / f"{name}.lock",
            break_after=self._lock_break_seconds,
        )

    @staticmethod
    def _read(path: Path) -> TaskRecord | None:
        """读取记录；文件不存在返回 None，内容损坏抛 CorruptTaskRecordError"""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return TaskRecord.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise CorruptTaskRecordError(path.name, e) from e

    @staticmethod
    def _write(path: Path, record: TaskRecord) -> None:
        """原子写入：同目录临时文件 -> fsync -> os.replace"""
        tmp_path = path.with_name(f".{path.name}.{ULID()}.tmp")
        data = json.dumps(record.to_storage(), ensure_ascii=False, indent=2)
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
