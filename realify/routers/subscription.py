"""
Subscription status endpoint.

- GET /api/subscription/status — plan and balance for the calling user:
    active         → access row with units left
    limit_reached  → access row, balance exhausted
    no_plan        → anonymous, no row, or inactive row
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from realify.auth.session_auth import AuthenticatedUser, get_optional_user
from realify.services.unit_ledger import unit_ledger

logger = logging.getLogger(__name__)

router = APIRouter()

NO_PLAN = {
    "active": False,
    "status": "no_plan",
    "plan": None,
    "units_remaining": 0,
    "units_total": 0,
}


@router.get("/subscription/status")
async def subscription_status(user: Optional[AuthenticatedUser] = Depends(get_optional_user)):
    if user is None:
        return dict(NO_PLAN)

    sub = unit_ledger.get_active_subscription(user.user_id)
    if sub is None:
        return dict(NO_PLAN)

    has_units = sub.units_remaining > 0
    return {
        "active": has_units,
        "status": "active" if has_units else "limit_reached",
        "plan": sub.plan,
        "units_remaining": sub.units_remaining,
        "units_total": sub.units_total,
    }
