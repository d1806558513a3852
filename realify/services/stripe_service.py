"""
Stripe Service — Checkout, Credits, Portal & Webhook Verification
==================================================================

PURPOSE:
    Thin adapter over the Stripe SDK for the billing flows:
    1. **create_checkout()** — subscription checkout for a plan, or a portal
       link when the customer already has a live subscription.
    2. **create_credits_checkout()** — one-time payment for a credits bundle.
    3. **create_portal()** — customer billing portal session.
    4. **verify_webhook()** — signature check of a raw webhook payload.

    Checkout metadata (user_id, plan / bundle) is written on the session and
    on the subscription or payment intent, so every downstream event can be
    mapped back to the user.

CONFIGURATION (env vars with REALIFY_ prefix):
    REALIFY_STRIPE_SECRET_KEY, REALIFY_STRIPE_WEBHOOK_SECRET,
    REALIFY_STRIPE_PRICE_STARTER / _CREATOR,
    REALIFY_STRIPE_PRICE_CREDITS_SMALL / _MEDIUM / _LARGE,
    REALIFY_SITE_URL
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe

from realify.config import settings
from realify.core.async_utils import run_sync
from realify.core.errors import (
    CHECKOUT_FAILED,
    INVALID_BUNDLE,
    INVALID_PLAN,
    NO_BILLING_ACCOUNT,
    PORTAL_ERROR,
    SUBSCRIPTION_REQUIRED,
    WEBHOOK_NOT_CONFIGURED,
    WEBHOOK_VERIFICATION_FAILED,
    RealifyError,
)
from realify.services.billing_reconciler import BUNDLE_UNITS, PLAN_UNITS
from realify.services.unit_ledger import unit_ledger

logger = logging.getLogger(__name__)

__all__ = ["StripeService", "stripe_service"]

# Stripe statuses that mean the customer is still being billed.
LIVE_SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due", "unpaid")

# Ledger statuses allowed to buy credits / open the portal.
CREDITS_STATUSES = ("active", "trialing")
PORTAL_STATUSES = ("active", "canceling")


def _get_stripe():
    """Configure the API key on the stripe module and return it."""
    stripe.api_key = settings.stripe_secret_key
    return stripe


def _create_checkout_session(params: Dict[str, Any]) -> Any:
    return _get_stripe().checkout.Session.create(**params)


class StripeService:
    """Creates Stripe checkout/portal sessions and verifies webhooks."""

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def _find_or_create_customer(self, email: str, user_id: str) -> str:
        client = _get_stripe()
        existing = client.Customer.list(email=email, limit=1)
        if existing.data:
            return existing.data[0].id

        created = client.Customer.create(email=email, metadata={"user_id": user_id})
        logger.info("Stripe customer created: user=%s customer=%s", user_id, created.id)
        return created.id

    def _has_live_subscription(self, customer_id: str) -> bool:
        subs = _get_stripe().Subscription.list(customer=customer_id, status="all", limit=20)
        return any(s.status in LIVE_SUBSCRIPTION_STATUSES for s in subs.data)

    def _portal_url(self, customer_id: str) -> str:
        portal = _get_stripe().billing_portal.Session.create(
            customer=customer_id,
            return_url=settings.site_url,
        )
        return portal.url

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout(self, user_id: str, email: Optional[str], plan: Any) -> str:
        """Return a checkout URL for ``plan`` (or a portal URL if already subscribed)."""
        price_id = settings.plan_price_id(plan) if plan in PLAN_UNITS else None
        if not price_id:
            raise RealifyError(INVALID_PLAN, detail=f"plan={plan!r}")
        if not email:
            raise RealifyError(CHECKOUT_FAILED, detail="user has no email address")

        try:
            return await run_sync(self._subscription_checkout, user_id, email, plan, price_id)
        except stripe.StripeError as exc:
            raise RealifyError(CHECKOUT_FAILED, detail=str(exc), context={"plan": plan}) from exc

    def _subscription_checkout(self, user_id: str, email: str, plan: str, price_id: str) -> str:
        customer_id = self._find_or_create_customer(email, user_id)

        if self._has_live_subscription(customer_id):
            logger.info("Checkout redirected to portal: user=%s customer=%s", user_id, customer_id)
            return self._portal_url(customer_id)

        metadata = {"user_id": user_id, "plan": plan}
        session = _get_stripe().checkout.Session.create(
            mode="subscription",
            customer=customer_id,
            client_reference_id=user_id,
            line_items=[{"price": price_id, "quantity": 1}],
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
            success_url=f"{settings.site_url}/?upgrade=success",
            cancel_url=f"{settings.site_url}/?upgrade=cancel",
        )
        logger.info("Checkout session created: user=%s plan=%s session=%s", user_id, plan, session.id)
        return session.url

    async def create_credits_checkout(self, user_id: str, email: Optional[str], bundle: Any) -> str:
        """Return a one-time payment URL for a credits bundle."""
        if not unit_ledger.has_access(user_id, CREDITS_STATUSES):
            raise RealifyError(SUBSCRIPTION_REQUIRED, detail=f"user={user_id}")

        price_id = settings.bundle_price_id(bundle) if bundle in BUNDLE_UNITS else None
        if not price_id:
            raise RealifyError(INVALID_BUNDLE, detail=f"bundle={bundle!r}")

        metadata = {
            "user_id": user_id,
            "purchase_type": "credits_bundle",
            "bundle": bundle,
        }
        params: Dict[str, Any] = {
            "mode": "payment",
            "client_reference_id": user_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "success_url": f"{settings.site_url}/?credits=success",
            "cancel_url": f"{settings.site_url}/?credits=cancel",
        }
        sub = unit_ledger.get_subscription(user_id)
        if sub is not None and sub.stripe_customer_id:
            params["customer"] = sub.stripe_customer_id
        elif email:
            params["customer_email"] = email

        try:
            session = await run_sync(_create_checkout_session, params)
        except stripe.StripeError as exc:
            raise RealifyError(CHECKOUT_FAILED, detail=str(exc), context={"bundle": bundle}) from exc

        logger.info("Credits checkout created: user=%s bundle=%s session=%s", user_id, bundle, session.id)
        return session.url

    # ------------------------------------------------------------------
    # Portal
    # ------------------------------------------------------------------

    async def create_portal(self, user_id: str) -> str:
        sub = unit_ledger.get_active_subscription(user_id, PORTAL_STATUSES)
        if sub is None or not sub.stripe_customer_id:
            raise RealifyError(NO_BILLING_ACCOUNT, detail=f"user={user_id}")

        try:
            return await run_sync(self._portal_url, sub.stripe_customer_id)
        except stripe.StripeError as exc:
            raise RealifyError(PORTAL_ERROR, detail=str(exc)) from exc

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe signature and return the event as a plain dict.

        Raises:
            RealifyError: WEBHOOK_NOT_CONFIGURED without a signing secret,
                WEBHOOK_VERIFICATION_FAILED for a missing or bad signature.
        """
        secret = settings.stripe_webhook_secret
        if not secret:
            raise RealifyError(WEBHOOK_NOT_CONFIGURED)
        if not signature:
            raise RealifyError(WEBHOOK_VERIFICATION_FAILED, detail="missing stripe-signature header")

        try:
            _get_stripe().Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise RealifyError(WEBHOOK_VERIFICATION_FAILED, detail=str(exc)) from exc

        return json.loads(payload)


# Module-level singleton
stripe_service = StripeService()
