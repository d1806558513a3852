"""
Billing Models
==============

SQLModel tables for persistent billing state:
- Subscription: the per-user unit ledger row (plan, status, balances).
- ProcessedStripeEvent: Stripe event ids already applied to the ledger.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

# Statuses that grant access to generation. The webhook path only writes
# "active" and "inactive"; "trialing" and "canceling" are set on the shared
# subscriptions table by external writers (dashboard edits, backfills).
ACCESS_STATUSES = ("active", "trialing", "canceling")
SUBSCRIPTION_STATUSES = ACCESS_STATUSES + ("inactive",)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(SQLModel, table=True):
    """Unit ledger row — exactly one per user."""

    __tablename__ = "subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True, max_length=128)
    stripe_customer_id: Optional[str] = Field(default=None, index=True, nullable=True, max_length=255)
    plan: Optional[str] = Field(default=None, nullable=True, max_length=32)
    status: str = Field(default="active", max_length=32)
    units_total: int = Field(default=0)
    units_remaining: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_access(self) -> bool:
        return self.status in ACCESS_STATUSES


class ProcessedStripeEvent(SQLModel, table=True):
    """A Stripe webhook event that has already been applied."""

    __tablename__ = "stripe_events"

    id: str = Field(primary_key=True, max_length=255)
    event_type: str = Field(max_length=128)
    created_at: datetime = Field(default_factory=utcnow)
