"""
Session Authentication (Supabase Auth)
======================================

Resolves the calling user from the Supabase session:

    1. ``Authorization: Bearer <jwt>`` header, else
    2. the configured session cookie, else
    3. Supabase SSR cookies ``sb-<ref>-auth-token`` (possibly split into
       ``.0``, ``.1`` ... chunks).

Cookie values may be a raw JWT, JSON holding ``access_token`` (or a list
whose first item is the token), or that JSON base64-encoded behind a
``base64-`` prefix.

The token is validated with ``GET {supabase_url}/auth/v1/user``; results are
cached per token in a TTLCache.
"""

import base64
import json
import logging
import re
from typing import Dict, Optional

import httpx
from cachetools import TTLCache
from fastapi import HTTPException, Request, status
from pydantic import BaseModel

from realify.config import settings
from realify.core.errors import NOT_AUTHENTICATED, RealifyError
from realify.core.structured_logging import user_id_var

logger = logging.getLogger(__name__)

SSR_COOKIE_PATTERN = re.compile(r"^sb-.+-auth-token(?:\.(\d+))?$")


class AuthenticatedUser(BaseModel):
    """User resolved from a validated Supabase session."""

    user_id: str
    email: Optional[str] = None


# In-memory cache for validated session tokens
session_cache = TTLCache(maxsize=1000, ttl=settings.auth_cache_ttl)

DEV_USER = AuthenticatedUser(user_id="dev_user_auth_disabled", email="dev@localhost")


def _is_auth_enabled() -> bool:
    """Auth can only be disabled together with debug mode."""
    if settings.auth_enabled:
        return True
    if settings.debug:
        logger.warning("AUTH DISABLED: REALIFY_AUTH_ENABLED=false with debug=True. Do NOT use this in production.")
        return False
    logger.warning("Ignoring REALIFY_AUTH_ENABLED=false because debug=False.")
    return True


# ---------------------------------------------------------------------------
# Token extraction
# ---------------------------------------------------------------------------

def parse_session_cookie(value: str) -> Optional[str]:
    """Return the access token held in a Supabase session cookie value."""
    if not value:
        return None

    if value.startswith("base64-"):
        encoded = value[len("base64-"):]
        try:
            value = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None

    if value[:1] in ("{", "["):
        try:
            data = json.loads(value)
        except json.JSONDecodeError:
            return None
        if isinstance(data, dict):
            token = data.get("access_token")
        elif isinstance(data, list) and data:
            token = data[0]
        else:
            token = None
        return token if isinstance(token, str) and token else None

    return value


def _ssr_cookie_value(cookies: Dict[str, str]) -> Optional[str]:
    """Join a (possibly chunked) sb-<ref>-auth-token cookie."""
    chunks = []
    for name, value in cookies.items():
        match = SSR_COOKIE_PATTERN.match(name)
        if match:
            chunks.append((int(match.group(1) or 0), value))
    if not chunks:
        return None
    return "".join(value for _, value in sorted(chunks))


def extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token

    cookie = request.cookies.get(settings.session_cookie_name)
    if cookie:
        return parse_session_cookie(cookie)

    ssr_value = _ssr_cookie_value(request.cookies)
    if ssr_value:
        return parse_session_cookie(ssr_value)
    return None


# ---------------------------------------------------------------------------
# Supabase validation
# ---------------------------------------------------------------------------

_http_client: Optional[httpx.AsyncClient] = None


def _get_http_client() -> httpx.AsyncClient:
    """Return a shared httpx client for Supabase Auth calls."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _http_client


async def _validate_token(token: str) -> Optional[AuthenticatedUser]:
    """Ask Supabase Auth who owns ``token``."""
    url = f"{settings.supabase_url.rstrip('/')}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": settings.supabase_anon_key or "",
    }
    client = _get_http_client()

    try:
        response = await client.get(url, headers=headers)
    except httpx.RequestError as exc:
        logger.error("HTTP request to Supabase Auth failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service is currently unavailable.",
        )

    if response.status_code == 200:
        data = response.json()
        if data.get("id"):
            return AuthenticatedUser(user_id=data["id"], email=data.get("email"))
        return None
    if response.status_code in (401, 403):
        logger.info("Invalid session token received: %s...", token[:7])
        return None

    logger.error(
        "Error validating session. Supabase returned status %s. Response: %s",
        response.status_code, response.text[:300],
    )
    return None


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

def _remember(request: Request, user: AuthenticatedUser) -> AuthenticatedUser:
    request.state.user = user
    user_id_var.set(user.user_id)
    return user


async def get_current_user(request: Request) -> AuthenticatedUser:
    """Authenticate the request from its Supabase session or bearer token."""
    if not _is_auth_enabled():
        return _remember(request, DEV_USER)

    token = extract_token(request)
    if not token:
        raise RealifyError(NOT_AUTHENTICATED, detail="no session token")

    cached_user = session_cache.get(token)
    if cached_user:
        return _remember(request, cached_user)

    validated_user = await _validate_token(token)
    if not validated_user:
        raise RealifyError(NOT_AUTHENTICATED, detail="session token rejected")

    session_cache[token] = validated_user
    return _remember(request, validated_user)


async def get_optional_user(request: Request) -> Optional[AuthenticatedUser]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    try:
        return await get_current_user(request)
    except RealifyError:
        return None
    except HTTPException as exc:
        # auth service unreachable; read-only routes degrade to anonymous
        logger.warning("Optional auth unavailable (%s); treating caller as anonymous", exc.status_code)
        return None


async def close_http_client():
    """Gracefully close the shared httpx client at shutdown."""
    global _http_client
    if _http_client and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None
