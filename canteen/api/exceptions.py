"""
异常处理器

所有错误响应统一为 {"error": message}，不暴露堆栈和内部标识。
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from canteen.core.exceptions import BusinessException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "服务器繁忙，请稍后再试"
VALUE_ERROR_PREFIX = "Value error, "


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def describe_validation_error(exc: RequestValidationError) -> str:
    """取第一条校验错误作为提示信息"""
    errors = exc.errors()
    if not errors:
        return "请求体格式错误"

    first = errors[0]
    message = str(first.get("msg", "请求参数不合法"))
    if message.startswith(VALUE_ERROR_PREFIX):
        return message[len(VALUE_ERROR_PREFIX):]

    if first.get("type") == "json_invalid":
        return "请求体格式错误"

    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{field}: {message}" if field else message


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求参数校验失败"""
    message = describe_validation_error(exc)
    logger.info(f"请求参数校验失败 {request.url.path}: {message}")
    return error_response(status.HTTP_400_BAD_REQUEST, message)


async def business_exception_handler(request: Request, exc: BusinessException) -> JSONResponse:
    """业务规则异常"""
    logger.info(f"业务异常 {request.url.path}: [{exc.error_code}] {exc.message}")
    return error_response(exc.status_code, exc.message)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """数据库异常"""
    logger.exception(f"数据库异常 {request.url.path}: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR_MESSAGE)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """未预期异常"""
    logger.exception(f"未处理异常 {request.url.path}: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR_MESSAGE)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """HTTP异常（路由不存在、服务不可用等）"""
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_response(exc.status_code, message)
