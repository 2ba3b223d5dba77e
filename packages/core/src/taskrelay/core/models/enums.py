"""枚举定义

包含 TaskType、TaskStatus、EventType、ErrorCode，
以及任务类型到记录名前缀的映射。
"""

from enum import StrEnum


class TaskType(StrEnum):
    """任务类型 -- 新增类型时在此追加成员，并在 TASK_NAME_PREFIXES 中登记前缀"""

    RESEARCH = "research"
    MATERIALS = "materials"


# 任务记录名前缀（记录名 = 前缀-主题slug.json）
TASK_NAME_PREFIXES: dict[TaskType, str] = {
    TaskType.RESEARCH: "research",
    TaskType.MATERIALS: "generate-materials",
}


class TaskStatus(StrEnum):
    """任务状态

    只有两个存储态。完成以删除记录表示，不存在终态。
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"


class EventType(StrEnum):
    """事件类型（封闭集合，emit/subscribe 时校验）"""

    JOB_CREATED = "job.created"
    JOB_UPDATED = "job.updated"
    JOB_DELETED = "job.deleted"
    TASK_CREATED = "task.created"
    TASK_CLAIMED = "task.claimed"
    TASK_RELEASED = "task.released"
    TASK_COMPLETED = "task.completed"
    RESEARCH_SAVED = "research.saved"
    MATERIALS_SAVED = "materials.saved"


EVENT_TYPES: frozenset[str] = frozenset(t.value for t in EventType)


class ErrorCode(StrEnum):
    """可恢复的预期结果码 -- 以结构化结果返回，不抛异常"""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_INPUT = "INVALID_INPUT"


def is_known_event_type(event_type: str) -> bool:
    """判断事件类型是否属于封闭集合"""
    return event_type in EVENT_TYPES
