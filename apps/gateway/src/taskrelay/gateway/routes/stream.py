"""SSE 事件流路由

GET /api/stream/subscriptions/{subscription_id}: 以 SSE 推送订阅的事件。
先推送游标之后已保留的匹配事件，再实时推送新事件；
无事件时按 SSE_HEARTBEAT_INTERVAL 发送心跳，订阅被删除后结束流。
"""

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse
from taskrelay.core.bus import EventBus
from taskrelay.core.config import SSE_HEARTBEAT_INTERVAL
from taskrelay.core.models import Event

from ..deps import get_event_bus
from ..errors import error_response

router = APIRouter()


def _event_to_sse(event: Event) -> dict:
    """将 Event 转换为 SSE 消息"""
    return {
        "id": event.id,
        "event": event.type,
        "data": json.dumps(event.model_dump(mode="json"), ensure_ascii=False),
    }


async def subscription_event_stream(
    bus: EventBus,
    subscription_id: str,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
) -> AsyncIterator[dict]:
    """订阅事件流生成器

    复用长轮询：每轮最多等待一个心跳间隔，超时发送心跳注释。
    """
    while True:
        result = await bus.poll(subscription_id, timeout_ms=int(heartbeat_interval * 1000))
        if not result.success:
            return
        for event in result.events:
            yield _event_to_sse(event)
        if not result.events:
            if bus.get_subscription(subscription_id) is None:
                return
            yield {"comment": "heartbeat"}


@router.get("/api/stream/subscriptions/{subscription_id}")
async def stream_subscription_events(
    subscription_id: str,
    bus: EventBus = Depends(get_event_bus),
):
    """SSE 事件流端点"""
    if bus.get_subscription(subscription_id) is None:
        return error_response(
            404,
            "SUBSCRIPTION_NOT_FOUND",
            f"Subscription {subscription_id} does not exist",
        )

    return EventSourceResponse(subscription_event_stream(bus, subscription_id))
