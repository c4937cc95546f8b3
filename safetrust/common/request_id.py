"""Request correlation ids for API calls."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from safetrust.core.logging import get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Probed by device connectivity monitors every few seconds.
QUIET_PATHS = ("/v1/health",)


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request_id_var.get() or "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Accept or mint a request id, expose it to logs and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
        request_id = incoming[:64] if incoming else uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        latency_ms = round((time.perf_counter() - started) * 1000, 1)

        response.headers[REQUEST_ID_HEADER] = request_id
        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "latency_ms": latency_ms,
            },
        )
        return response
