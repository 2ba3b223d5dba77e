"""依赖注入模块 -- 通过 FastAPI Depends 注入 TaskQueue / EventBus

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from taskrelay.core.bus import EventBus
from taskrelay.core.queue import TaskQueue


def get_task_queue(request: Request) -> TaskQueue:
    """从 app.state 获取 TaskQueue 实例"""
    return request.app.state.task_queue


def get_event_bus(request: Request) -> EventBus:
    """从 app.state 获取 EventBus 实例"""
    return request.app.state.event_bus
