"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含任务存储可用性、磁盘空间与事件总线状态。
"""

import shutil

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. task_store: 任务存储连通性（目录可写 / SQLite 可查询）
    2. disk_space_mb: 磁盘剩余空间
    3. event_bus: 订阅数与等待中的 poll 数（仅展示）
    """
    checks = {}
    all_ok = True

    # 1. 任务存储检查
    try:
        await request.app.state.task_queue.store.ping()
        checks["task_store"] = "ok"
    except Exception as e:
        log.warning("readiness_store_check_failed", error=str(e))
        checks["task_store"] = f"error: {e}"
        all_ok = False

    # 2. 磁盘空间检查
    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    # 3. 事件总线
    bus = request.app.state.event_bus
    checks["event_bus"] = {
        "subscriptions": len(bus.list_subscriptions()),
        "pending_polls": bus.pending_poll_count,
    }

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "store_backend": request.app.state.queue_settings.store_backend,
            "checks": checks,
        },
    )
