"""Event / Subscription 模型

Event 不可变；id 使用 ULID，seq 为总线内严格递增序号，
订阅游标以 seq 比较，避免同毫秒事件的排序歧义。
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import EventType


class Event(BaseModel):
    """事件 -- 状态变化通知

    type 为字符串：未知类型允许发出（记录 warning），但不会被任何订阅匹配。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="唯一标识，ULID 格式")
    seq: int = Field(description="总线内序号，严格单调递增")
    type: str = Field(description="事件类型")
    timestamp: datetime = Field(description="事件时间戳")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")


class Subscription(BaseModel):
    """订阅 -- 仅存于进程内存，进程重启即清空"""

    id: str = Field(description="订阅 ID，ULID 格式")
    event_types: list[EventType] = Field(description="关心的事件类型")
    webhook_url: str | None = Field(default=None, description="webhook 推送地址")
    callback_id: str | None = Field(default=None, description="订阅者自述标识")
    created_at: datetime = Field(description="创建时间")
    last_event_id: str | None = Field(default=None, description="最近已投递事件 ID")
    last_seq: int = Field(default=0, description="最近已投递事件序号（游标）")

    @property
    def mode(self) -> Literal["webhook", "poll"]:
        return "webhook" if self.webhook_url else "poll"

    def matches(self, event: Event) -> bool:
        return event.type in self.event_types

    def advance(self, event: Event) -> None:
        """推进游标（只前进不后退）"""
        if event.seq > self.last_seq:
            self.last_seq = event.seq
            self.last_event_id = event.id
