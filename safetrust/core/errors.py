"""Exception handlers rendering every API error in one envelope."""

from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from safetrust.common.request_id import get_request_id
from safetrust.core.app_exceptions import AppError, MFANotConfiguredError
from safetrust.core.config import settings
from safetrust.core.logging import get_logger

logger = get_logger(__name__)

_DEFAULT_CODES = {
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


class ErrorResponse(BaseModel):
    """{error_code, message, details, request_id}"""

    error_code: str
    message: str
    details: Any | None = None
    request_id: str | None = None


def _envelope(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details,
        request_id=get_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "issue": error.get("msg", "Validation error"),
            "type": error.get("type", "validation_error"),
        }
        for error in exc.errors()
    ]
    return _envelope(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "VALIDATION_ERROR", "Invalid request data", details
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc, AppError):
        return _envelope(request, exc.status_code, exc.code, exc.message, exc.details, exc.headers)

    code = _DEFAULT_CODES.get(exc.status_code, "HTTP_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _envelope(request, exc.status_code, code, message, headers=exc.headers)


async def mfa_not_configured_handler(request: Request, exc: MFANotConfiguredError) -> JSONResponse:
    return _envelope(request, status.HTTP_404_NOT_FOUND, "NOT_FOUND", "MFA not configured for this user")


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort (500). Storage and key errors from the MFA service end up here."""
    logger.error("Unhandled exception", extra={"error_type": type(exc).__name__}, exc_info=exc)

    if settings.ENV == "prod":
        return _envelope(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "An internal server error occurred"
        )
    return _envelope(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        str(exc),
        {"type": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(MFANotConfiguredError, mfa_not_configured_handler)
    app.add_exception_handler(Exception, general_exception_handler)
