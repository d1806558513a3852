"""
Error code system.

RealifyError is the base exception for all structured errors.
Raise it with an error code from the registry, and the error middleware
will produce a structured JSON response.

Usage:
    from realify.core.errors import RealifyError
    raise RealifyError("RLF-BILL-003", detail="units_remaining=4 cost=10")
"""

from __future__ import annotations

import re

CODE_PATTERN = re.compile(r"^RLF-[A-Z]{2,6}-\d{3}$")


class RealifyError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "RLF-GEN-002".
        detail: Internal-only detail message (never exposed to users).
        context: Arbitrary key-value context for structured logging.
    """

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        context: dict | None = None,
    ) -> None:
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(f"{code}: {detail}" if detail else code)


# Registry codes referenced from code, named by the kind they carry.
NOT_AUTHENTICATED = "RLF-AUTH-001"
NO_SUBSCRIPTION = "RLF-BILL-001"
SUBSCRIPTION_REQUIRED = "RLF-BILL-002"
LIMIT_REACHED = "RLF-BILL-003"
INVALID_PLAN = "RLF-BILL-004"
INVALID_BUNDLE = "RLF-BILL-005"
CHECKOUT_FAILED = "RLF-BILL-006"
PORTAL_ERROR = "RLF-BILL-007"
WEBHOOK_VERIFICATION_FAILED = "RLF-BILL-008"
WEBHOOK_NOT_CONFIGURED = "RLF-BILL-009"
NO_BILLING_ACCOUNT = "RLF-BILL-010"
WEBHOOK_PROCESSING_FAILED = "RLF-BILL-011"
INVALID_REQUEST = "RLF-GEN-001"
GENERATION_FAILED = "RLF-GEN-002"
SERVERS_BUSY = "RLF-GEN-003"
STORAGE_UPLOAD_FAILED = "RLF-STOR-001"


def referenced_codes() -> list[str]:
    """Every code constant above; the registry must define each of them."""
    return sorted(
        value for name, value in globals().items()
        if name.isupper() and isinstance(value, str) and CODE_PATTERN.match(value)
    )
