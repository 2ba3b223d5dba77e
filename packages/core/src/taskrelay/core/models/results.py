"""操作结果模型

NOT_FOUND / ALREADY_CLAIMED / INVALID_INPUT 等预期结果以结构化值返回，
worker 主循环检查 success / error 决定跳过或重试，而不是捕获异常。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ErrorCode, EventType
from .event import Event
from .task import TaskRecord


class OperationResult(BaseModel):
    """操作结果基类"""

    success: bool
    error: ErrorCode | None = Field(default=None)
    message: str = Field(default="")

    @classmethod
    def failure(cls, error: ErrorCode, message: str, **fields):
        return cls(success=False, error=error, message=message, **fields)


class CreateTaskResult(OperationResult):
    """create_task 结果；already_exists 是标记而非错误"""

    name: str = Field(default="")
    already_exists: bool = Field(default=False)
    task: TaskRecord | None = Field(default=None)


class ClaimTaskResult(OperationResult):
    """claim_task 结果

    成功时 task 为领取后的完整记录；ALREADY_CLAIMED 时
    claimed_by / claimed_at 为当前持有者信息。
    """

    name: str
    task: TaskRecord | None = Field(default=None)
    claimed_by: str | None = Field(default=None)
    claimed_at: datetime | None = Field(default=None)


class TaskActionResult(OperationResult):
    """release_task / complete_task 结果"""

    name: str
    task: TaskRecord | None = Field(default=None)


class SubscribeResult(OperationResult):
    """subscribe 结果"""

    subscription_id: str | None = Field(default=None)
    event_types: list[EventType] = Field(default_factory=list)
    ignored_types: list[str] = Field(
        default_factory=list,
        description="请求中不属于封闭集合、被过滤掉的类型",
    )


class PollResult(OperationResult):
    """poll 结果；超时返回 success=True + 空 events"""

    subscription_id: str
    events: list[Event] = Field(default_factory=list)
