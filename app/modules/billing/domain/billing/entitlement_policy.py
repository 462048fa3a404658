"""Premium entitlement derived from a user's subscription record."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from app.modules.billing.domain.billing.subscription_state import (
    SubscriptionRecord,
    SubscriptionStatus,
)

ENTITLED_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING_CANCEL}
)


def has_premium_access(
    record: SubscriptionRecord, now: Optional[datetime] = None
) -> bool:
    """Paid access runs until valid_until; pending_cancel keeps it to the period end."""
    if record.status not in ENTITLED_STATUSES or record.valid_until is None:
        return False
    now = now or datetime.now(timezone.utc)
    return record.valid_until > now
