"""taskrelay Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    EVENT_TYPES,
    TASK_NAME_PREFIXES,
    ErrorCode,
    EventType,
    TaskStatus,
    TaskType,
    is_known_event_type,
)
from .event import Event, Subscription
from .payloads import (
    TaskClaimedPayload,
    TaskCompletedPayload,
    TaskCreatedPayload,
    TaskEventPayload,
    TaskReleasedPayload,
)
from .results import (
    ClaimTaskResult,
    CreateTaskResult,
    OperationResult,
    PollResult,
    SubscribeResult,
    TaskActionResult,
)
from .task import TaskRecord

__all__ = [
    # 枚举
    "TaskType",
    "TaskStatus",
    "EventType",
    "ErrorCode",
    "EVENT_TYPES",
    "TASK_NAME_PREFIXES",
    "is_known_event_type",
    # Task
    "TaskRecord",
    # Event
    "Event",
    "Subscription",
    # Payloads
    "TaskEventPayload",
    "TaskCreatedPayload",
    "TaskClaimedPayload",
    "TaskReleasedPayload",
    "TaskCompletedPayload",
    # Results
    "OperationResult",
    "CreateTaskResult",
    "ClaimTaskResult",
    "TaskActionResult",
    "SubscribeResult",
    "PollResult",
]
