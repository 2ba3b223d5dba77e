"""Task 记录模型

一条记录即一个待处理的工作单元。记录被删除即表示完成（或从未请求），
status 只区分 pending / in_progress。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import TaskStatus, TaskType

# 持久化时排除的视图字段
_VIEW_FIELDS = {"is_stale"}


class TaskRecord(BaseModel):
    """Task 记录

    name 由 type + subject 决定（见 keys.task_name），同一主题重复入队
    会命中已存在的记录，而不是产生重复任务。
    """

    name: str = Field(description="记录名，例如 research-acme-ai.json")
    type: TaskType = Field(description="任务类型")
    subject_key: str = Field(description="主题 slug，例如 acme-ai")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="存储态")
    created_at: datetime = Field(description="创建时间，用于 FIFO 排序")
    claimed_at: datetime | None = Field(default=None, description="领取时间")
    claimed_by: str | None = Field(
        default=None,
        description="领取者标识，仅用于诊断",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="任务类型相关的主题数据（创建时拷入，worker 无需回查）",
    )
    is_stale: bool = Field(
        default=False,
        description="读取视图标记：锁已过期，按 pending 报告；不落盘",
    )

    def to_storage(self) -> dict[str, Any]:
        """序列化为落盘格式（排除视图字段）"""
        return self.model_dump(mode="json", exclude=_VIEW_FIELDS)

    def lock_age_seconds(self, now: datetime) -> float | None:
        """返回锁持有时长（秒），未被领取时返回 None"""
        if self.claimed_at is None:
            return None
        return (now - self.claimed_at).total_seconds()

    def is_lock_stale(self, stale_before: datetime) -> bool:
        """判断 in_progress 锁是否早于 stale_before（即已过期）

        缺少 claimed_at 的 in_progress 记录无法判断持有时长，按过期处理。
        """
        if self.status != TaskStatus.IN_PROGRESS:
            return False
        if self.claimed_at is None:
            return True
        return self.claimed_at < stale_before
