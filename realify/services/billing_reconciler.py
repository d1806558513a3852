"""
Billing Reconciler — Stripe Webhook Events → Unit Ledger
=========================================================

PURPOSE:
    Applies verified Stripe events to the unit ledger:
    1. **checkout.session.completed** — grants the plan allotment, or a
       credits bundle (which never changes the user's plan).
    2. **invoice.paid / invoice.payment_succeeded** — grants the plan
       allotment on every renewal, stacking onto the remaining balance.
    3. **customer.subscription.deleted** — marks the customer's rows
       inactive; balances are kept.
    Any other event type is acknowledged without changes.

IDEMPOTENCY:
    The event id is inserted into ``stripe_events`` inside the same
    transaction as the ledger mutation. A re-delivered event hits the
    primary key and is reported as ``deduped``; a failed mutation rolls the
    event id back so Stripe's retry is applied normally.
    Invoice grants also claim ``invoice:<id>``, so the paired
    invoice.paid / invoice.payment_succeeded events grant only once.

INITIAL INVOICE:
    Invoices with ``billing_reason == "subscription_create"`` are skipped:
    the first allotment is granted by checkout.session.completed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from realify.config import settings
from realify.core.database import get_engine
from realify.models.billing import ProcessedStripeEvent, utcnow
from realify.services.unit_ledger import unit_ledger

logger = logging.getLogger(__name__)

__all__ = [
    "BillingReconciler",
    "ReconcileResult",
    "PLAN_UNITS",
    "BUNDLE_UNITS",
    "billing_reconciler",
]

PLAN_UNITS: Dict[str, int] = {
    "starter": 200,
    "creator": 750,
}

BUNDLE_UNITS: Dict[str, int] = {
    "small": 100,
    "medium": 200,
    "large": 300,
}

DEFAULT_PLAN = "starter"

INVOICE_EVENTS = ("invoice.paid", "invoice.payment_succeeded")


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of applying one Stripe event."""
    event_id: Optional[str]
    event_type: str
    action: str  # granted | deactivated | skipped | ignored | deduped
    user_id: Optional[str] = None
    units: int = 0
    plan: Optional[str] = None


class _DuplicateEvent(Exception):
    pass


def _dig(obj: Any, *path: str) -> Any:
    """Walk nested dicts, returning None at the first missing key."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _customer_id(obj: Dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer or None


def _safe_plan(value: Any) -> Optional[str]:
    return value if value in PLAN_UNITS else None


def _claim(conn: Connection, key: str, event_type: str) -> None:
    """Record ``key`` in stripe_events; raises _DuplicateEvent if it is already there."""
    events = ProcessedStripeEvent.__table__
    try:
        conn.execute(events.insert().values(id=key, event_type=event_type, created_at=utcnow()))
    except IntegrityError as exc:
        raise _DuplicateEvent(key) from exc


class BillingReconciler:
    """Maps Stripe events onto unit ledger grants and deactivations."""

    def apply(self, event: Dict[str, Any]) -> ReconcileResult:
        """
        Apply one verified event. Storage errors propagate after rollback so
        the webhook can answer with a retryable failure.
        """
        event_id = event.get("id")
        event_type = event.get("type", "")
        obj = _dig(event, "data", "object") or {}

        try:
            with get_engine().begin() as conn:
                if event_id:
                    _claim(conn, event_id, event_type)
                result = self._dispatch(conn, event_id, event_type, obj)
        except _DuplicateEvent:
            logger.info("Stripe event already processed: id=%s type=%s", event_id, event_type)
            return ReconcileResult(event_id=event_id, event_type=event_type, action="deduped")

        logger.info(
            "Stripe event applied: id=%s type=%s action=%s user=%s units=%d",
            event_id, event_type, result.action, result.user_id, result.units,
        )
        return result

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        conn: Connection,
        event_id: Optional[str],
        event_type: str,
        obj: Dict[str, Any],
    ) -> ReconcileResult:
        if event_type == "checkout.session.completed":
            return self._checkout_completed(conn, event_id, event_type, obj)
        if event_type in INVOICE_EVENTS:
            return self._invoice_paid(conn, event_id, event_type, obj)
        if event_type == "customer.subscription.deleted":
            return self._subscription_deleted(conn, event_id, event_type, obj)
        return ReconcileResult(event_id=event_id, event_type=event_type, action="ignored")

    def _checkout_completed(self, conn, event_id, event_type, session) -> ReconcileResult:
        user_id = (
            _dig(session, "metadata", "user_id")
            or _dig(session, "subscription_details", "metadata", "user_id")
            or session.get("client_reference_id")
        )
        customer_id = _customer_id(session)

        if _dig(session, "metadata", "purchase_type") == "credits_bundle":
            bundle = _dig(session, "metadata", "bundle")
            units = BUNDLE_UNITS.get(bundle)
            if not user_id or not units:
                logger.warning(
                    "Credits checkout not applied: event=%s user=%s bundle=%s",
                    event_id, user_id, bundle,
                )
                return ReconcileResult(event_id=event_id, event_type=event_type, action="skipped")

            unit_ledger.grant(user_id, units, stripe_customer_id=customer_id, conn=conn)
            return ReconcileResult(
                event_id=event_id, event_type=event_type, action="granted",
                user_id=user_id, units=units,
            )

        plan = _safe_plan(_dig(session, "metadata", "plan")) or _safe_plan(
            _dig(session, "subscription_details", "metadata", "plan")
        )
        if not user_id or not plan:
            logger.warning(
                "Checkout not applied: event=%s user=%s plan=%s",
                event_id, user_id, plan,
            )
            return ReconcileResult(event_id=event_id, event_type=event_type, action="skipped")

        units = PLAN_UNITS[plan]
        unit_ledger.grant(user_id, units, plan=plan, stripe_customer_id=customer_id, conn=conn)
        return ReconcileResult(
            event_id=event_id, event_type=event_type, action="granted",
            user_id=user_id, units=units, plan=plan,
        )

    def _invoice_paid(self, conn, event_id, event_type, invoice) -> ReconcileResult:
        if invoice.get("billing_reason") == "subscription_create":
            logger.info("Initial subscription invoice skipped: event=%s", event_id)
            return ReconcileResult(event_id=event_id, event_type=event_type, action="skipped")

        # invoice.paid and invoice.payment_succeeded both arrive for one payment
        invoice_id = invoice.get("id")
        if invoice_id:
            _claim(conn, f"invoice:{invoice_id}", event_type)

        lines = _dig(invoice, "lines", "data") or []
        line = lines[0] if lines else {}

        price_id = _dig(line, "pricing", "price_details", "price") or _dig(line, "price", "id")
        plan = settings.price_to_plan().get(price_id, DEFAULT_PLAN)
        units = PLAN_UNITS[plan]
        customer_id = _customer_id(invoice)

        user_id = (
            _dig(invoice, "parent", "subscription_details", "metadata", "user_id")
            or _dig(invoice, "subscription_details", "metadata", "user_id")
            or _dig(line, "metadata", "user_id")
            or _dig(invoice, "metadata", "user_id")
        )
        if not user_id and customer_id:
            user_id = unit_ledger.find_user_by_customer(customer_id, conn=conn)

        if not user_id:
            logger.warning(
                "Invoice user unresolved, grant skipped: event=%s customer=%s",
                event_id, customer_id,
            )
            return ReconcileResult(event_id=event_id, event_type=event_type, action="skipped")

        unit_ledger.grant(user_id, units, plan=plan, stripe_customer_id=customer_id, conn=conn)
        return ReconcileResult(
            event_id=event_id, event_type=event_type, action="granted",
            user_id=user_id, units=units, plan=plan,
        )

    def _subscription_deleted(self, conn, event_id, event_type, subscription) -> ReconcileResult:
        customer_id = _customer_id(subscription)
        if not customer_id:
            return ReconcileResult(event_id=event_id, event_type=event_type, action="skipped")

        unit_ledger.mark_inactive_by_customer(customer_id, conn=conn)
        return ReconcileResult(event_id=event_id, event_type=event_type, action="deactivated")


# Module-level singleton
billing_reconciler = BillingReconciler()
