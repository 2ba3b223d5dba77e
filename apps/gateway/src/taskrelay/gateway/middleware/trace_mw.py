"""TraceMiddleware -- 将路径中的任务名 / 订阅 ID 绑定到日志上下文

/api/tasks/{name}[/claim|/release|/complete] -> task_name
/api/subscriptions/{id}[/poll]、/api/stream/subscriptions/{id} -> subscription_id
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_PATH_BINDINGS = {
    "tasks": "task_name",
    "subscriptions": "subscription_id",
}


def extract_trace_context(path: str) -> dict[str, str]:
    """从请求路径中提取追踪字段"""
    parts = [p for p in path.split("/") if p]
    context = {}
    for i, part in enumerate(parts[:-1]):
        key = _PATH_BINDINGS.get(part)
        if key is not None:
            context[key] = parts[i + 1]
    return context


class TraceMiddleware(BaseHTTPMiddleware):
    """任务 / 订阅级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = extract_trace_context(request.url.path)
        if context:
            structlog.contextvars.bind_contextvars(**context)

        return await call_next(request)
