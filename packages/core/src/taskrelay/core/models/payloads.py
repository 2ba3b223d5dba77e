"""任务事件 payload 定义

job_id / company 从任务 payload 中透传（存在时），便于 UI 不回查即可展示。
"""

from typing import Any

from pydantic import BaseModel, Field

from .task import TaskRecord


class TaskEventPayload(BaseModel):
    """任务事件公共字段"""

    name: str = Field(description="任务记录名")
    type: str = Field(description="任务类型")
    subject_key: str = Field(description="主题 slug")
    job_id: Any = Field(default=None, description="外部记录 ID")
    company: str | None = Field(default=None)

    @classmethod
    def from_task(cls, task: TaskRecord, **extra: Any):
        return cls(
            name=task.name,
            type=task.type.value,
            subject_key=task.subject_key,
            job_id=task.payload.get("job_id", task.payload.get("jobId")),
            company=task.payload.get("company"),
            **extra,
        )


class TaskCreatedPayload(TaskEventPayload):
    """task.created 事件 payload"""


class TaskClaimedPayload(TaskEventPayload):
    """task.claimed 事件 payload"""

    worker_id: str | None = Field(default=None, description="领取者标识")
    reclaimed_stale: bool = Field(default=False, description="是否从过期锁重新领取")


class TaskReleasedPayload(TaskEventPayload):
    """task.released 事件 payload"""

    previous_claimant: str | None = Field(default=None)


class TaskCompletedPayload(TaskEventPayload):
    """task.completed 事件 payload"""

    tokens: dict[str, Any] | None = Field(
        default=None,
        description="可选的 token 用量（input/output/model）",
    )
