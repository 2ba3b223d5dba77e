"""FastAPI 应用主文件

app 创建 + lifespan 管理：任务存储 / 事件总线 / 任务队列的初始化与关闭 + 路由注册。
运行网关的进程持有唯一的 EventBus；其他进程（worker）通过 HTTP API 操作队列，
由此发出的事件对所有订阅者可见。
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from taskrelay.core.bus import EventBus
from taskrelay.core.config import load_queue_settings
from taskrelay.core.queue import TaskQueue
from taskrelay.core.store import create_task_store

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import events, health, stream, subscriptions, tasks

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时创建存储、总线与队列，关闭时释放"""
    settings = load_queue_settings()
    app.state.queue_settings = settings

    store = await create_task_store(settings)
    event_bus = EventBus(
        retention=settings.event_retention,
        max_events=settings.event_max_count,
        webhook_timeout_s=settings.webhook_timeout_s,
    )
    app.state.event_bus = event_bus
    app.state.task_queue = TaskQueue(
        store,
        bus=event_bus,
        stale_after=settings.stale_after,
    )
    log.info(
        "gateway_started",
        store_backend=settings.store_backend,
        stale_lock_seconds=settings.stale_lock_seconds,
        event_retention_seconds=settings.event_retention_seconds,
    )

    yield

    await event_bus.aclose()
    await store.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="taskrelay Gateway",
        version="0.1.0",
        description="任务队列与事件总线 HTTP API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire()

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(events.router, tags=["events"])
    app.include_router(subscriptions.router, tags=["subscriptions"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()


def run() -> None:
    """命令行入口：TASKRELAY_HOST / TASKRELAY_PORT 控制监听地址"""
    uvicorn.run(
        app,
        host=os.environ.get("TASKRELAY_HOST", "127.0.0.1"),
        port=int(os.environ.get("TASKRELAY_PORT", "8000")),
        log_config=None,
    )
