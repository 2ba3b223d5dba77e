"""TaskStore SQLite 实现

每个写操作是一个 BEGIN IMMEDIATE 事务：先取得数据库写锁再读改写，
多进程共享同一数据库文件时领取依然互斥。同一连接上的事务由
asyncio.Lock 串行化（一个连接同一时刻只能有一个事务）。
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import aiosqlite
import structlog
from pydantic import ValidationError

from ..exceptions import CorruptTaskRecordError
from ..models.enums import TaskStatus
from ..models.task import TaskRecord
from .protocols import ClaimOutcome

log = structlog.get_logger()

_COLUMNS = "name, type, subject_key, status, created_at, claimed_at, claimed_by, payload"


def _ts(value: datetime | None) -> str | None:
    """统一为 UTC 定宽 ISO 字符串，保证字符串比较等价于时间比较"""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._write_lock = asyncio.Lock()

    @property
    def conn(self) -> aiosqlite.Connection:
        return self._conn

    async def create_if_absent(self, record: TaskRecord) -> bool:
        async with self._transaction():
            cursor = await self._conn.execute(
                f"""
                INSERT OR IGNORE INTO tasks ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.name,
                    record.type.value,
                    record.subject_key,
                    record.status.value,
                    _ts(record.created_at),
                    _ts(record.claimed_at),
                    record.claimed_by,
                    json.dumps(record.payload, ensure_ascii=False),
                ),
            )
            return cursor.rowcount == 1

    async def get(self, name: str) -> TaskRecord | None:
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE name = ?",
            (name,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def scan(self) -> list[TaskRecord]:
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks ORDER BY created_at ASC"
        )
        rows = await cursor.fetchall()
        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except CorruptTaskRecordError as e:
                log.warning(
                    "corrupt_task_record_skipped",
                    name=e.name,
                    error=str(e.original_error),
                )
        return records

    async def compare_and_swap_claim(
        self,
        name: str,
        worker_id: str | None,
        now: datetime,
        stale_before: datetime,
    ) -> ClaimOutcome:
        async with self._transaction():
            previous = await self.get(name)
            if previous is None:
                return ClaimOutcome(state="missing")

            cursor = await self._conn.execute(
                """
                UPDATE tasks
                SET status = ?, claimed_at = ?, claimed_by = ?
                WHERE name = ?
                  AND (status = ? OR claimed_at IS NULL OR claimed_at < ?)
                """,
                (
                    TaskStatus.IN_PROGRESS.value,
                    _ts(now),
                    worker_id,
                    name,
                    TaskStatus.PENDING.value,
                    _ts(stale_before),
                ),
            )
            if cursor.rowcount != 1:
                return ClaimOutcome(state="held", record=previous)

        claimed = previous.model_copy(
            update={
                "status": TaskStatus.IN_PROGRESS,
                "claimed_at": now,
                "claimed_by": worker_id,
            }
        )
        return ClaimOutcome(state="claimed", record=claimed, previous=previous)

    async def release(self, name: str) -> TaskRecord | None:
        async with self._transaction():
            current = await self.get(name)
            if current is None:
                return None
            await self._conn.execute(
                """
                UPDATE tasks
                SET status = ?, claimed_at = NULL, claimed_by = NULL
                WHERE name = ?
                """,
                (TaskStatus.PENDING.value, name),
            )
        return current

    async def delete(self, name: str) -> TaskRecord | None:
        async with self._transaction():
            current = await self.get(name)
            if current is None:
                return None
            await self._conn.execute("DELETE FROM tasks WHERE name = ?", (name,))
        return current

    async def discard(self, name: str) -> bool:
        async with self._transaction():
            cursor = await self._conn.execute("DELETE FROM tasks WHERE name = ?", (name,))
        return cursor.rowcount == 1

    async def ping(self) -> None:
        cursor = await self._conn.execute("SELECT 1")
        await cursor.fetchone()

    async def close(self) -> None:
        await self._conn.close()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        """写事务：BEGIN IMMEDIATE ... COMMIT，异常时回滚"""
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                await self._conn.rollback()
                raise
            await self._conn.commit()

    @staticmethod
    def _row_to_record(row) -> TaskRecord:
        """将数据库行转换为 TaskRecord"""
        try:
            return TaskRecord(
                name=row[0],
                type=row[1],
                subject_key=row[2],
                status=row[3],
                created_at=datetime.fromisoformat(row[4]),
                claimed_at=datetime.fromisoformat(row[5]) if row[5] else None,
                claimed_by=row[6],
                payload=json.loads(row[7]) if row[7] else {},
            )
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            raise CorruptTaskRecordError(row[0], e) from e
