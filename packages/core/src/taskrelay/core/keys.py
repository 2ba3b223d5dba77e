"""任务记录命名工具

记录名完全由 (type, subject) 决定：同一主题重复请求得到同一个名字，
从而让入队天然幂等。
"""

import re

from .models.enums import TASK_NAME_PREFIXES, TaskType

_NON_SLUG = re.compile(r"[^a-z0-9]+")
_VALID_NAME = re.compile(r"^[a-z0-9][a-z0-9-]*\.json$")


def slugify(text: str) -> str:
    """转为 slug：小写，非 [a-z0-9] 连续字符折叠为 "-"，去掉首尾 "-"

    Example:
        >>> slugify("Acme AI, Inc.")
        'acme-ai-inc'
    """
    return _NON_SLUG.sub("-", text.lower()).strip("-")


def name_prefix(task_type: TaskType) -> str:
    """任务类型对应的记录名前缀；未登记的类型使用类型值本身"""
    return TASK_NAME_PREFIXES.get(task_type, task_type.value)


def task_name(task_type: TaskType, subject: str) -> str:
    """根据任务类型和主题生成记录名

    Args:
        task_type: 任务类型
        subject: 主题（公司名或已 slug 化的 key 均可）

    Returns:
        形如 research-acme-ai.json 的记录名

    Raises:
        ValueError: subject slug 化后为空
    """
    slug = slugify(subject)
    if not slug:
        raise ValueError(f"subject {subject!r} has no usable characters")
    return f"{name_prefix(task_type)}-{slug}.json"


def is_valid_task_name(name: str) -> bool:
    """校验记录名，拒绝路径分隔符等可能逃出任务目录的输入"""
    return bool(_VALID_NAME.match(name))


def parse_task_name(name: str) -> tuple[TaskType, str] | None:
    """从记录名反推 (type, subject_key)，无法识别时返回 None

    按前缀长度倒序匹配，generate-materials- 不会被误判为其他前缀。
    """
    if not is_valid_task_name(name):
        return None
    stem = name.removesuffix(".json")
    prefixes = sorted(
        ((name_prefix(t), t) for t in TaskType),
        key=lambda item: len(item[0]),
        reverse=True,
    )
    for prefix, task_type in prefixes:
        if stem.startswith(prefix + "-") and len(stem) > len(prefix) + 1:
            return task_type, stem[len(prefix) + 1 :]
    return None
