"""API 错误响应."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from retrui.core.errors import FetchError

logger = logging.getLogger(__name__)


def error_response(message: str, status_code: int) -> JSONResponse:
    """统一错误格式 {success: false, error, statusCode}."""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "statusCode": status_code},
    )


async def fetch_error_handler(request: Request, exc: FetchError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{request.url.path} 失败: {exc.kind.value} {exc.message}")
    return error_response(exc.message, exc.status_code)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return error_response(str(message), 400)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FetchError, fetch_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
