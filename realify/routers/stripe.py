"""
Stripe billing endpoints.

- POST /api/stripe/checkout          — subscription checkout for a plan
- POST /api/stripe/credits-checkout  — one-time credits bundle checkout
- POST /api/stripe/portal            — customer billing portal
- POST /api/stripe/webhook           — signed Stripe events → unit ledger
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from realify.auth.session_auth import AuthenticatedUser, get_current_user
from realify.core.async_utils import run_sync
from realify.core.errors import WEBHOOK_PROCESSING_FAILED, RealifyError
from realify.services.billing_reconciler import billing_reconciler
from realify.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    plan: Optional[str] = None


class CreditsCheckoutRequest(BaseModel):
    bundle: Optional[str] = None


class RedirectResponse(BaseModel):
    url: str


@router.post("/checkout", response_model=RedirectResponse)
async def create_checkout(
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Start a plan subscription (or open the portal if already subscribed)."""
    url = await stripe_service.create_checkout(user.user_id, user.email, body.plan)
    return RedirectResponse(url=url)


@router.post("/credits-checkout", response_model=RedirectResponse)
async def create_credits_checkout(
    body: CreditsCheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Buy a credits bundle. Requires an active or trialing subscription."""
    url = await stripe_service.create_credits_checkout(user.user_id, user.email, body.bundle)
    return RedirectResponse(url=url)


@router.post("/portal", response_model=RedirectResponse)
async def create_portal(user: AuthenticatedUser = Depends(get_current_user)):
    url = await stripe_service.create_portal(user.user_id)
    return RedirectResponse(url=url)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
):
    """
    Receive Stripe events. Unsigned or mis-signed payloads are rejected
    (400); a storage failure answers 500 so Stripe redelivers the event.
    """
    payload = await request.body()
    event = stripe_service.verify_webhook(payload, stripe_signature)

    try:
        await run_sync(billing_reconciler.apply, event)
    except SQLAlchemyError as exc:
        raise RealifyError(
            WEBHOOK_PROCESSING_FAILED,
            detail=str(exc),
            context={"event_id": event.get("id"), "event_type": event.get("type")},
        ) from exc

    return {"received": True}
