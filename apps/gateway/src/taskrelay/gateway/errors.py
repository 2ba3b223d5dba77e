"""错误响应 -- 结构化结果到 HTTP 响应的映射

错误体统一为 {"error": {"code": ..., "message": ...}}。
"""

from starlette.responses import JSONResponse
from taskrelay.core.models import ErrorCode, OperationResult

_STATUS_CODES = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_CLAIMED: 409,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.INVALID_INPUT: 400,
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    **extra,
) -> JSONResponse:
    """构造错误响应"""
    error = {"code": code, "message": message, **extra}
    return JSONResponse(status_code=status_code, content={"error": error})


def result_error_response(
    result: OperationResult,
    not_found_code: str = "NOT_FOUND",
    **extra,
) -> JSONResponse:
    """将失败的 OperationResult 映射为错误响应

    Args:
        result: success=False 的操作结果
        not_found_code: NOT_FOUND 时使用的资源级错误码（如 TASK_NOT_FOUND）
    """
    code = result.error.value if result.error else "INTERNAL_ERROR"
    if result.error == ErrorCode.NOT_FOUND:
        code = not_found_code
    return error_response(
        _STATUS_CODES.get(result.error, 500),
        code,
        result.message,
        **extra,
    )
