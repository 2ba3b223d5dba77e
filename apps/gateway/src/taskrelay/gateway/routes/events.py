"""事件路由

GET  /api/events: 最近事件（新到旧），支持 since / type / limit。
POST /api/events: 发出应用层事件（job.* / research.saved / materials.saved 等）。
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from taskrelay.core.bus import EventBus
from taskrelay.core.config import EVENT_LIST_DEFAULT_LIMIT
from taskrelay.core.models import EVENT_TYPES

from ..deps import get_event_bus

router = APIRouter()


class EmitEventRequest(BaseModel):
    """发出事件请求体"""

    type: str = Field(description="事件类型")
    payload: dict[str, Any] = Field(default_factory=dict, description="事件 payload")


@router.get("/api/events")
async def list_events(
    since: datetime | None = Query(default=None, description="只返回该时间之后的事件"),
    type: str | None = Query(default=None, description="按事件类型筛选"),
    limit: int = Query(default=EVENT_LIST_DEFAULT_LIMIT, ge=1, le=1000),
    bus: EventBus = Depends(get_event_bus),
):
    """查询最近事件，供离线后补看"""
    events = bus.list_events(since=since, event_type=type, limit=limit)
    return {
        "events": [e.model_dump(mode="json") for e in events],
        "count": len(events),
        "available_types": sorted(EVENT_TYPES),
    }


@router.post("/api/events")
async def emit_event(
    body: EmitEventRequest,
    bus: EventBus = Depends(get_event_bus),
):
    """发出事件；未知类型照常发出（记录 warning），不会被任何订阅匹配"""
    event = await bus.emit(body.type, body.payload)
    return JSONResponse(status_code=201, content={"event": event.model_dump(mode="json")})
