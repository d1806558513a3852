"""
Unit Ledger — Pre-flight Check, Post-flight Spend & Grants
===========================================================

PURPOSE:
    Holds the per-user unit balance used to meter image generations:
    1. **can_consume()** — Pre-flight: point-in-time check that the user's
       active ledger row has at least ``units`` remaining. Not a reservation.
    2. **consume()** — Post-flight: deducts units after a generation has been
       uploaded. Runs as one UPDATE that clamps at zero, so the balance can
       never go negative even when two requests race past the check.
    3. **try_spend() / refund()** — Reservation: one conditional UPDATE that
       only matches when the balance covers the cost, released again with
       refund() if the generation fails. This is what the generation
       pipeline uses, so concurrent requests can never overspend.
    4. **grant()** — Adds units to both ``units_total`` and
       ``units_remaining`` (creating the row on first grant). Called by the
       billing reconciler for checkouts, renewals and credit bundles.

KNOWN RACE:
    can_consume() and consume() are separated by a slow provider call.
    Two concurrent requests at balance == cost can both pass the check; the
    clamp keeps the balance at 0 but the second generation is not charged.
    Callers that need a hard guarantee use try_spend().

FAILURE POLICY:
    consume() never raises: a failed ledger write is logged and the
    generation response still succeeds.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union

import sqlalchemy as sa
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from realify.core.database import get_engine, get_session_context
from realify.models.billing import ACCESS_STATUSES, Subscription, utcnow

logger = logging.getLogger(__name__)

__all__ = [
    "UnitLedger",
    "UNIT_COSTS",
    "unit_cost",
    "unit_ledger",
]

# ---------------------------------------------------------------------------
# Unit costs per generation, keyed by provider and quality tier.
# ---------------------------------------------------------------------------
_GPT_IMAGE_TIERS = {
    "low": 2,
    "medium": 6,
    "high": 10,
    "auto": 10,
}

# "openai" is the same GPT image model served by the OpenAI Images API.
UNIT_COSTS: dict[str, Union[int, dict[str, int]]] = {
    "ideogram": 10,
    "gpt": _GPT_IMAGE_TIERS,
    "openai": _GPT_IMAGE_TIERS,
}
DEFAULT_QUALITY = "auto"


def unit_cost(provider: str, quality: Optional[str] = None) -> int:
    """Look up the unit cost of one generation. Unknown tiers cost the ``auto`` price."""
    cost = UNIT_COSTS.get(provider)
    if cost is None:
        raise ValueError(f"Unknown provider: {provider!r}")
    if isinstance(cost, int):
        return cost
    return cost.get(quality or DEFAULT_QUALITY, cost[DEFAULT_QUALITY])


_subscriptions = Subscription.__table__


@contextmanager
def _begin(conn: Optional[Connection]) -> Iterator[Connection]:
    """Reuse the caller's transaction, or open one of our own."""
    if conn is not None:
        yield conn
        return
    with get_engine().begin() as own:
        yield own


class UnitLedger:
    """
    Per-user unit balances backed by the ``subscriptions`` table.

    Reads go through a SQLModel session; every mutation is a single
    SQL statement so the database provides row-level atomicity.
    """

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        with get_session_context() as session:
            stmt = select(Subscription).where(Subscription.user_id == user_id)
            return session.exec(stmt).first()

    def get_active_subscription(
        self,
        user_id: str,
        statuses: tuple[str, ...] = ACCESS_STATUSES,
    ) -> Optional[Subscription]:
        """Return the user's ledger row if its status is one of ``statuses``."""
        sub = self.get_subscription(user_id)
        if sub is None or sub.status not in statuses:
            return None
        return sub

    def has_access(self, user_id: str, statuses: tuple[str, ...] = ACCESS_STATUSES) -> bool:
        return self.get_active_subscription(user_id, statuses) is not None

    def find_user_by_customer(
        self,
        stripe_customer_id: str,
        conn: Optional[Connection] = None,
    ) -> Optional[str]:
        t = _subscriptions
        with _begin(conn) as c:
            return c.execute(
                sa.select(t.c.user_id)
                .where(t.c.stripe_customer_id == stripe_customer_id)
                .limit(1)
            ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def can_consume(self, user_id: str, units: int) -> bool:
        sub = self.get_active_subscription(user_id)
        if sub is None:
            return False
        return sub.units_remaining >= units

    def get_remaining(self, user_id: str) -> int:
        sub = self.get_active_subscription(user_id)
        return sub.units_remaining if sub else 0

    # ------------------------------------------------------------------
    # Post-flight
    # ------------------------------------------------------------------

    def consume(self, user_id: str, units: int) -> Optional[int]:
        """
        Deduct ``units`` from the user's active row, clamped at zero.

        Returns the new balance, or None when there is no active row or the
        write failed. Never raises on storage errors.
        """
        if units < 0:
            raise ValueError(f"units must be non-negative: {units}")

        t = _subscriptions
        try:
            with get_engine().begin() as conn:
                result = conn.execute(
                    t.update()
                    .where(t.c.user_id == user_id)
                    .where(t.c.status.in_(ACCESS_STATUSES))
                    .values(
                        units_remaining=sa.case(
                            (t.c.units_remaining > units, t.c.units_remaining - units),
                            else_=0,
                        ),
                        updated_at=utcnow(),
                    )
                )
                if result.rowcount == 0:
                    logger.warning("No active subscription to deduct from: user=%s units=%d", user_id, units)
                    return None

                remaining = conn.execute(
                    sa.select(t.c.units_remaining).where(t.c.user_id == user_id)
                ).scalar_one()
        except SQLAlchemyError as exc:
            logger.error("Failed to deduct units: user=%s units=%d error=%s", user_id, units, exc)
            return None

        logger.info("Units deducted: user=%s units=%d remaining=%d", user_id, units, remaining)
        return remaining

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    def try_spend(self, user_id: str, units: int) -> Optional[int]:
        """
        Atomically decrement ``units`` only if the balance covers them.

        Returns the new balance, or None when no active row has enough
        units. Storage errors propagate.
        """
        if units < 0:
            raise ValueError(f"units must be non-negative: {units}")

        t = _subscriptions
        with get_engine().begin() as conn:
            result = conn.execute(
                t.update()
                .where(t.c.user_id == user_id)
                .where(t.c.status.in_(ACCESS_STATUSES))
                .where(t.c.units_remaining >= units)
                .values(
                    units_remaining=t.c.units_remaining - units,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount == 0:
                logger.info("Spend rejected: user=%s units=%d", user_id, units)
                return None

            remaining = conn.execute(
                sa.select(t.c.units_remaining).where(t.c.user_id == user_id)
            ).scalar_one()

        logger.info("Units reserved: user=%s units=%d remaining=%d", user_id, units, remaining)
        return remaining

    def refund(self, user_id: str, units: int) -> None:
        """Release a reservation made by try_spend(). ``units_total`` is untouched."""
        if units <= 0:
            return

        t = _subscriptions
        try:
            with get_engine().begin() as conn:
                conn.execute(
                    t.update()
                    .where(t.c.user_id == user_id)
                    .values(
                        units_remaining=t.c.units_remaining + units,
                        updated_at=utcnow(),
                    )
                )
        except SQLAlchemyError as exc:
            logger.error("Failed to refund units: user=%s units=%d error=%s", user_id, units, exc)
            return

        logger.info("Units refunded: user=%s units=%d", user_id, units)

    # ------------------------------------------------------------------
    # Grants & lifecycle
    # ------------------------------------------------------------------

    def grant(
        self,
        user_id: str,
        units: int,
        plan: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        """
        Stack ``units`` onto the user's ledger row, creating it if absent.

        ``plan`` and ``stripe_customer_id`` are only written when given, so a
        credit bundle never changes the user's plan. Storage errors propagate
        (the webhook transaction must roll back).
        """
        if units <= 0:
            raise ValueError(f"grant must be positive: {units}")

        t = _subscriptions
        now = utcnow()
        values = {
            "units_total": t.c.units_total + units,
            "units_remaining": t.c.units_remaining + units,
            "status": "active",
            "updated_at": now,
        }
        if plan:
            values["plan"] = plan
        if stripe_customer_id:
            values["stripe_customer_id"] = stripe_customer_id

        with _begin(conn) as c:
            result = c.execute(t.update().where(t.c.user_id == user_id).values(**values))
            if result.rowcount == 0:
                c.execute(
                    t.insert().values(
                        user_id=user_id,
                        stripe_customer_id=stripe_customer_id,
                        plan=plan,
                        status="active",
                        units_total=units,
                        units_remaining=units,
                        created_at=now,
                        updated_at=now,
                    )
                )
                logger.info("Ledger row created: user=%s plan=%s units=%d", user_id, plan, units)
                return

        logger.info("Units granted: user=%s plan=%s units=%d", user_id, plan, units)

    def mark_inactive_by_customer(
        self,
        stripe_customer_id: str,
        conn: Optional[Connection] = None,
    ) -> int:
        """Mark rows for a Stripe customer inactive; balances are left untouched."""
        t = _subscriptions
        with _begin(conn) as c:
            result = c.execute(
                t.update()
                .where(t.c.stripe_customer_id == stripe_customer_id)
                .values(status="inactive", updated_at=utcnow())
            )
        logger.info("Subscriptions deactivated: customer=%s rows=%d", stripe_customer_id, result.rowcount)
        return result.rowcount


# Module-level singleton
unit_ledger = UnitLedger()
