"""
Subscription state model: statuses, lifecycle events and the transition table.

The table below is the single source of truth for which events may move a
record out of which statuses. Both the user-action path and the webhook path
consult it, so a record never diverges based on which path reached it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from app.shared.core.exceptions import InvariantViolationError


class SubscriptionStatus(str, Enum):
    """Billing statuses tracked per user."""

    FREE = "free"
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PENDING_CANCEL = "pending_cancel"


class LifecycleEvent(str, Enum):
    CREATE_REQUESTED = "create_requested"
    USER_ABORT = "user_abort"
    USER_CANCEL = "user_cancel"
    WEBHOOK_CHARGED = "webhook_charged"
    WEBHOOK_CANCELLED = "webhook_cancelled"
    WEBHOOK_PAYMENT_FAILED = "webhook_payment_failed"


ALL_STATUSES = frozenset(SubscriptionStatus)

# event -> (statuses it may leave, statuses it may land in)
TRANSITIONS: dict[LifecycleEvent, tuple[frozenset[SubscriptionStatus], frozenset[SubscriptionStatus]]] = {
    LifecycleEvent.CREATE_REQUESTED: (
        frozenset({SubscriptionStatus.FREE}),
        frozenset({SubscriptionStatus.PENDING}),
    ),
    # Also clears ended subscriptions so a new one can be created.
    LifecycleEvent.USER_ABORT: (
        frozenset(
            {
                SubscriptionStatus.PENDING,
                SubscriptionStatus.CANCELLED,
                SubscriptionStatus.FAILED,
            }
        ),
        frozenset({SubscriptionStatus.FREE}),
    ),
    LifecycleEvent.USER_CANCEL: (
        frozenset(
            {
                SubscriptionStatus.PENDING,
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.PENDING_CANCEL,
            }
        ),
        frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.PENDING_CANCEL}),
    ),
    # Webhooks match by subscription_id and apply from any status.
    LifecycleEvent.WEBHOOK_CHARGED: (
        ALL_STATUSES,
        frozenset({SubscriptionStatus.ACTIVE}),
    ),
    LifecycleEvent.WEBHOOK_CANCELLED: (
        ALL_STATUSES,
        frozenset({SubscriptionStatus.CANCELLED}),
    ),
    LifecycleEvent.WEBHOOK_PAYMENT_FAILED: (
        ALL_STATUSES,
        frozenset({SubscriptionStatus.FAILED}),
    ),
}

STATUSES_REQUIRING_SUBSCRIPTION = frozenset(
    {
        SubscriptionStatus.PENDING,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.PENDING_CANCEL,
    }
)


def can_transition(
    event: LifecycleEvent, current: SubscriptionStatus, target: SubscriptionStatus
) -> bool:
    sources, targets = TRANSITIONS[event]
    return current in sources and target in targets


def allowed_sources(event: LifecycleEvent) -> frozenset[SubscriptionStatus]:
    return TRANSITIONS[event][0]


@dataclass(frozen=True)
class SubscriptionRecord:
    """Immutable snapshot of a user's subscription fields."""

    user_id: str
    status: SubscriptionStatus = SubscriptionStatus.FREE
    subscription_id: Optional[str] = None
    plan_id: Optional[str] = None
    valid_until: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    exists: bool = False

    @classmethod
    def free(cls, user_id: str) -> "SubscriptionRecord":
        return cls(user_id=user_id)

    def with_changes(self, **changes: object) -> "SubscriptionRecord":
        return replace(self, **changes)  # type: ignore[arg-type]


def validate_record_invariants(
    status: SubscriptionStatus,
    subscription_id: Optional[str],
    valid_until: Optional[datetime],
) -> None:
    """Reject field combinations no transition may produce."""
    if status == SubscriptionStatus.FREE:
        if subscription_id is not None or valid_until is not None:
            raise InvariantViolationError(
                "free records must not carry a subscription_id or valid_until",
                details={"status": status.value},
            )
    if status in STATUSES_REQUIRING_SUBSCRIPTION and not subscription_id:
        raise InvariantViolationError(
            f"status {status.value} requires a subscription_id",
            details={"status": status.value},
        )
