"""
FastAPI exception handler for RealifyError.

Catches RealifyError, looks up the registry, and returns a structured
JSON error response. Unknown codes get a safe fallback.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from realify.core.errors import RealifyError
from realify.core.errors.registry import error_registry

logger = logging.getLogger(__name__)


async def realify_error_handler(request: Request, exc: RealifyError) -> JSONResponse:
    """Convert RealifyError into a structured JSON response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.detail},
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "code": exc.code,
                "message": "An unexpected error occurred.",
                "retryable": False,
            },
        )

    log_extra = {
        "error.code": exc.code,
        "error.kind": entry.kind,
        "error.message": exc.detail,
        "http.path": request.url.path,
        **{f"error.ctx.{k}": v for k, v in exc.context.items()},
    }

    log_fn = _severity_to_log_fn(entry.severity)
    log_fn(entry.title, extra=log_extra)

    return JSONResponse(
        status_code=entry.http_status,
        content={
            "error": entry.kind,
            "code": entry.code,
            "message": entry.safe_message,
            "retryable": entry.retryable,
        },
    )


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
