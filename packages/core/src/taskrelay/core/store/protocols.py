"""Store Protocol 接口定义

TaskStore 抽象出四个原子原语：create_if_absent / compare_and_swap_claim /
release / delete，外加 get / scan 读取。任何后端（文件、SQL、KV）只要能
保证 compare_and_swap_claim 是针对单条记录的原子读改写，就能满足
"同一时刻至多一个有效领取"的要求。
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol

from ..models.task import TaskRecord

ClaimState = Literal["claimed", "held", "missing"]


@dataclass(frozen=True)
class ClaimOutcome:
    """compare_and_swap_claim 的结果

    - claimed: 领取成功，record 为领取后的记录，previous 为领取前的记录
    - held: 记录处于未过期的 in_progress，record 为当前记录
    - missing: 记录不存在
    """

    state: ClaimState
    record: TaskRecord | None = None
    previous: TaskRecord | None = None


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_if_absent(self, record: TaskRecord) -> bool:
        """记录不存在时写入并返回 True；已存在时不做任何修改并返回 False"""
        ...

    async def get(self, name: str) -> TaskRecord | None:
        """按记录名读取"""
        ...

    async def scan(self) -> list[TaskRecord]:
        """读取全部记录（顺序不保证，损坏的记录被跳过）"""
        ...

    async def compare_and_swap_claim(
        self,
        name: str,
        worker_id: str | None,
        now: datetime,
        stale_before: datetime,
    ) -> ClaimOutcome:
        """原子领取：仅当记录为 pending，或 in_progress 且 claimed_at < stale_before 时，
        置为 in_progress 并写入 claimed_at=now / claimed_by=worker_id
        """
        ...

    async def release(self, name: str) -> TaskRecord | None:
        """清除领取信息并置回 pending，返回释放前的记录；不存在时返回 None"""
        ...

    async def delete(self, name: str) -> TaskRecord | None:
        """删除记录并返回删除前的内容；不存在时返回 None"""
        ...

    async def discard(self, name: str) -> bool:
        """不解析内容直接删除记录（用于清理损坏记录）；返回记录是否存在"""
        ...

    async def ping(self) -> None:
        """存储可用性检查，不可用时抛出异常"""
        ...

    async def close(self) -> None:
        """释放存储资源"""
        ...
