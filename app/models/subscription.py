from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserSubscription(Base):
    """
    Per-user billing record reconciled from user actions and gateway webhooks.
    A missing row is equivalent to a free account.
    """

    __tablename__ = "user_subscriptions"
    __table_args__ = {"extend_existing": True}

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    # Gateway subscription id; indexed for webhook resolution.
    subscription_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    plan_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="free", nullable=False)
    valid_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class SubscriptionTombstone(Base):
    """
    Residual subscription_id -> user mapping kept after an abort clears the
    primary record, so late webhooks for the old id still resolve their user.
    """

    __tablename__ = "subscription_tombstones"
    __table_args__ = {"extend_existing": True}

    subscription_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    plan_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
