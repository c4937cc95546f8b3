"""Liveness and readiness endpoints.

``/health`` never touches storage and is what device connectivity monitors
probe. ``/ready`` checks the MFA store.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from safetrust.common.request_id import get_request_id
from safetrust.core.config import settings
from safetrust.core.dependencies import get_mfa_service
from safetrust.core.logging import get_logger
from safetrust.services.mfa_service import MFAService

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"


class ReadinessCheck(BaseModel):
    status: Literal["ok", "down"]
    message: str | None = None


class ReadinessResponse(BaseModel):
    status: Literal["ok", "down"]
    checks: dict[str, ReadinessCheck]
    request_id: str


@router.get("/health", response_model=HealthResponse, summary="Liveness check")
async def health() -> HealthResponse:
    return HealthResponse()


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ReadinessResponse}},
)
async def ready(request: Request, mfa: MFAService = Depends(get_mfa_service)):
    try:
        await mfa.ping()
        database = ReadinessCheck(status="ok")
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}", extra={"check": "database"})
        message = "unreachable" if settings.ENV == "prod" else str(e)
        database = ReadinessCheck(status="down", message=message)

    body = ReadinessResponse(
        status=database.status,
        checks={"database": database},
        request_id=get_request_id(request),
    )
    if body.status == "down":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())
    return body
