"""
Health check endpoints.

- GET /api/health          — cheap: process alive, version, uptime
- GET /api/health/deep     — bounded checks for database and configured providers
"""
import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text

from realify.auth.session_auth import AuthenticatedUser, get_current_user
from realify.config import settings
from realify.core.database import get_engine
from realify.core.structured_logging import APP_VERSION, SERVICE_NAME, get_uptime_s

logger = logging.getLogger(__name__)

router = APIRouter()

COMPONENT_TIMEOUT = 2.0  # seconds


# ── Cheap health ─────────────────────────────────────────────────────
@router.get("/health")
async def health_check():
    """Cheap health check — no network calls."""
    return {
        "status": "ok",
        "version": APP_VERSION,
        "service": SERVICE_NAME,
        "uptime_s": round(get_uptime_s(), 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Deep health (auth required, exposes configuration state) ────────
@router.get("/health/deep")
async def deep_health_check(_user: AuthenticatedUser = Depends(get_current_user)):
    """Deep health check with bounded component checks."""
    checks = [
        ("database", _check_database()),
        ("stripe", _check_configured(settings.stripe_secret_key and settings.stripe_webhook_secret, "Stripe keys")),
        ("replicate", _check_configured(settings.replicate_api_token, "Replicate token")),
        ("openai", _check_configured(settings.openai_api_key, "OpenAI key")),
        ("storage", _check_configured(settings.supabase_service_role_key, "Supabase service role key")),
    ]

    results = await asyncio.gather(
        *[_bounded_check(name, coro) for name, coro in checks],
        return_exceptions=True,
    )

    components = {}
    for name_result in results:
        if isinstance(name_result, Exception):
            continue
        name, result = name_result
        components[name] = result

    # Database down is fatal; a missing provider key only degrades
    if components.get("database", {}).get("status") != "ok":
        overall = "down"
    elif any(c.get("status") != "ok" for c in components.values()):
        overall = "degraded"
    else:
        overall = "ok"

    return {
        "status": overall,
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
        "uptime_s": round(get_uptime_s(), 1),
        "components": components,
    }


async def _bounded_check(name: str, coro) -> tuple[str, dict]:
    """Run a component check with a 2-second timeout."""
    try:
        result = await asyncio.wait_for(coro, timeout=COMPONENT_TIMEOUT)
        return name, result
    except asyncio.TimeoutError:
        return name, {"status": "down", "detail_safe": "Health check timed out"}
    except Exception as e:
        logger.warning("health_check_error", extra={"component": name, "error": str(e)})
        return name, {"status": "down", "detail_safe": f"Check failed: {type(e).__name__}"}


async def _check_database() -> dict:
    """Check the SQL database with SELECT 1."""
    start = time.perf_counter()
    try:
        with get_engine().connect() as conn:
            result = conn.execute(text("SELECT 1")).scalar()
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        if result == 1:
            status = "degraded" if latency_ms > 250 else "ok"
        else:
            status = "down"
        return {"status": status, "latency_ms": latency_ms}
    except Exception as e:
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        return {
            "status": "down",
            "latency_ms": latency_ms,
            "detail_safe": f"Query failed: {type(e).__name__}",
        }


async def _check_configured(value, label: str) -> dict:
    if value:
        return {"status": "ok"}
    return {"status": "down", "detail_safe": f"{label} not configured"}
