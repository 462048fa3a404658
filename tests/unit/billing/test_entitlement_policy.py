from datetime import datetime, timedelta, timezone

import pytest

from app.modules.billing.domain.billing.entitlement_policy import has_premium_access
from app.modules.billing.domain.billing.subscription_state import (
    SubscriptionRecord,
    SubscriptionStatus,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _record(status: SubscriptionStatus, valid_until=None) -> SubscriptionRecord:
    return SubscriptionRecord(
        user_id="user-1", status=status, subscription_id="sub_1", valid_until=valid_until
    )


@pytest.mark.parametrize(
    "status", [SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING_CANCEL]
)
def test_paid_statuses_are_premium_until_period_end(status) -> None:
    assert has_premium_access(_record(status, NOW + timedelta(days=3)), NOW) is True
    assert has_premium_access(_record(status, NOW - timedelta(seconds=1)), NOW) is False
    assert has_premium_access(_record(status, NOW), NOW) is False


def test_active_without_period_end_is_not_premium() -> None:
    assert has_premium_access(_record(SubscriptionStatus.ACTIVE), NOW) is False


@pytest.mark.parametrize(
    "status",
    [
        SubscriptionStatus.FREE,
        SubscriptionStatus.PENDING,
        SubscriptionStatus.FAILED,
        SubscriptionStatus.CANCELLED,
    ],
)
def test_other_statuses_are_never_premium(status) -> None:
    assert has_premium_access(_record(status, NOW + timedelta(days=30)), NOW) is False


def test_defaults_to_current_time() -> None:
    future = datetime.now(timezone.utc) + timedelta(days=1)
    assert has_premium_access(_record(SubscriptionStatus.ACTIVE, future)) is True
