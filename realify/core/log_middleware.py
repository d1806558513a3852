"""
Request correlation middleware.

Every request gets a request_id and a correlation_id (taken from the
caller's ``x-request-id`` / ``x-correlation-id`` headers when they are
well formed, generated otherwise). Both are bound to contextvars for the
structlog processors, echoed on the response, and logged with the
authenticated user once the request completes.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from realify.core.structured_logging import (
    correlation_id_var,
    request_id_var,
)

logger = logging.getLogger(__name__)

# Caller-supplied ids end up in log lines; anything else is replaced.
_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

# Liveness checks are polled constantly; their completion lines go to DEBUG.
QUIET_PATHS = ("/api/health",)


def _caller_id(request: Request, header: str) -> Optional[str]:
    value = request.headers.get(header)
    if value and _ID_PATTERN.match(value):
        return value
    return None


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Bind request/correlation ids for the request and log its outcome."""

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = _caller_id(request, "x-request-id") or uuid.uuid4().hex
        corr_id = _caller_id(request, "x-correlation-id") or req_id

        rid_token = request_id_var.set(req_id)
        cid_token = correlation_id_var.set(corr_id)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            user = getattr(request.state, "user", None)
            log = logger.debug if request.url.path in QUIET_PATHS else logger.info
            log(
                "request_completed",
                extra={
                    "http.method": request.method,
                    "http.path": request.url.path,
                    "http.status_code": status_code,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    "user.id": user.user_id if user else None,
                },
            )
            request_id_var.reset(rid_token)
            correlation_id_var.reset(cid_token)

        response.headers["x-request-id"] = req_id
        response.headers["x-correlation-id"] = corr_id
        return response
