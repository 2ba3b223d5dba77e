"""任务队列路由

GET  /api/tasks: 任务列表（FIFO），支持 type / status / include_stale 筛选。
POST /api/tasks: 入队；新建返回 201，已存在返回 200。
GET  /api/tasks/{name}: 原始记录。
POST /api/tasks/{name}/claim | /release | /complete: 领取 / 释放 / 完成。
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from taskrelay.core.models import ErrorCode, TaskStatus, TaskType
from taskrelay.core.queue import TaskQueue

from ..deps import get_task_queue
from ..errors import error_response, result_error_response

router = APIRouter()


class CreateTaskRequest(BaseModel):
    """入队请求体"""

    type: TaskType = Field(description="任务类型")
    subject: str = Field(description="主题（公司名或 slug）")
    payload: dict[str, Any] = Field(default_factory=dict, description="主题数据")


class ClaimTaskRequest(BaseModel):
    """领取请求体"""

    worker_id: str | None = Field(default=None, description="领取者标识")


class CompleteTaskRequest(BaseModel):
    """完成请求体"""

    tokens: dict[str, Any] | None = Field(default=None, description="token 用量")


def _dump(task) -> dict:
    return task.model_dump(mode="json")


@router.get("/api/tasks")
async def list_tasks(
    type: TaskType | None = Query(default=None, description="按任务类型筛选"),
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    include_stale: bool = Query(default=True, description="过期锁按 pending 报告"),
    queue: TaskQueue = Depends(get_task_queue),
):
    """查询任务列表，按 created_at 升序"""
    tasks = await queue.list_tasks(
        task_type=type,
        status=status,
        include_stale=include_stale,
    )
    return {"tasks": [_dump(t) for t in tasks], "count": len(tasks)}


@router.post("/api/tasks")
async def create_task(
    body: CreateTaskRequest,
    queue: TaskQueue = Depends(get_task_queue),
):
    """入队

    - 新任务返回 201 Created
    - 同名任务已存在返回 200 OK（already_exists=true，记录未修改）
    """
    result = await queue.create_task(body.type, body.subject, body.payload)
    if not result.success:
        return result_error_response(result)

    return JSONResponse(
        status_code=200 if result.already_exists else 201,
        content={
            "name": result.name,
            "already_exists": result.already_exists,
            "task": _dump(result.task) if result.task else None,
        },
    )


@router.get("/api/tasks/{name}")
async def get_task(
    name: str,
    queue: TaskQueue = Depends(get_task_queue),
):
    """查询原始记录"""
    task = await queue.get_task(name)
    if task is None:
        return error_response(
            404,
            "TASK_NOT_FOUND",
            f"Task {name} does not exist",
        )
    return {"task": _dump(task)}


@router.post("/api/tasks/{name}/claim")
async def claim_task(
    name: str,
    body: ClaimTaskRequest | None = None,
    queue: TaskQueue = Depends(get_task_queue),
):
    """领取任务

    - 成功返回 200 + 领取后的完整记录
    - 已被有效领取返回 409 ALREADY_CLAIMED（附当前持有者）
    - 不存在返回 404
    """
    worker_id = body.worker_id if body else None
    result = await queue.claim_task(name, worker_id)
    if result.error == ErrorCode.ALREADY_CLAIMED:
        holder = result.model_dump(mode="json", include={"claimed_by", "claimed_at"})
        return result_error_response(result, **holder)
    if not result.success:
        return result_error_response(result, not_found_code="TASK_NOT_FOUND")
    return {"name": result.name, "task": _dump(result.task)}


@router.post("/api/tasks/{name}/release")
async def release_task(
    name: str,
    queue: TaskQueue = Depends(get_task_queue),
):
    """释放任务（不校验持有者）"""
    result = await queue.release_task(name)
    if not result.success:
        return result_error_response(result, not_found_code="TASK_NOT_FOUND")
    return {"name": result.name, "task": _dump(result.task)}


@router.post("/api/tasks/{name}/complete")
async def complete_task(
    name: str,
    body: CompleteTaskRequest | None = None,
    queue: TaskQueue = Depends(get_task_queue),
):
    """完成任务：删除记录"""
    tokens = body.tokens if body else None
    result = await queue.complete_task(name, tokens=tokens)
    if not result.success:
        return result_error_response(result, not_found_code="TASK_NOT_FOUND")
    return {"name": result.name, "completed": True}
