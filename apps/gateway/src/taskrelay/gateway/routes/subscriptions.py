"""订阅路由

POST   /api/subscriptions: 创建订阅（poll 或 webhook 模式）。
DELETE /api/subscriptions/{subscription_id}: 删除订阅，唤醒等待中的 poll。
GET    /api/subscriptions/{subscription_id}/poll: 长轮询。
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from taskrelay.core.bus import EventBus
from taskrelay.core.config import POLL_DEFAULT_TIMEOUT_MS, POLL_MAX_TIMEOUT_MS

from ..deps import get_event_bus
from ..errors import result_error_response

router = APIRouter()


class SubscribeRequest(BaseModel):
    """订阅请求体"""

    event_types: list[str] = Field(description="关心的事件类型")
    webhook_url: str | None = Field(default=None, description="webhook 推送地址")
    callback_id: str | None = Field(default=None, description="订阅者标识")


@router.post("/api/subscriptions")
async def subscribe(
    body: SubscribeRequest,
    bus: EventBus = Depends(get_event_bus),
):
    """创建订阅

    - 成功返回 201，附接受的类型与被忽略的类型
    - 没有合法类型 / webhook_url 非法返回 400 INVALID_INPUT
    """
    result = bus.subscribe(
        body.event_types,
        webhook_url=body.webhook_url,
        callback_id=body.callback_id,
    )
    if not result.success:
        return result_error_response(result, ignored_types=result.ignored_types)

    return JSONResponse(
        status_code=201,
        content=result.model_dump(
            mode="json",
            include={"subscription_id", "event_types", "ignored_types"},
        ),
    )


@router.delete("/api/subscriptions/{subscription_id}")
async def unsubscribe(
    subscription_id: str,
    bus: EventBus = Depends(get_event_bus),
):
    """删除订阅"""
    result = bus.unsubscribe(subscription_id)
    if not result.success:
        return result_error_response(result, not_found_code="SUBSCRIPTION_NOT_FOUND")
    return {"subscription_id": subscription_id, "removed": True}


@router.get("/api/subscriptions/{subscription_id}/poll")
async def poll(
    subscription_id: str,
    timeout_ms: int = Query(
        default=POLL_DEFAULT_TIMEOUT_MS,
        ge=0,
        le=POLL_MAX_TIMEOUT_MS,
        description="最长等待时间（毫秒）",
    ),
    bus: EventBus = Depends(get_event_bus),
):
    """长轮询：有新事件立即返回，否则等待到超时（返回空列表）"""
    result = await bus.poll(subscription_id, timeout_ms=timeout_ms)
    if not result.success:
        return result_error_response(result, not_found_code="SUBSCRIPTION_NOT_FOUND")
    return {
        "subscription_id": subscription_id,
        "events": [e.model_dump(mode="json") for e in result.events],
        "count": len(result.events),
    }
