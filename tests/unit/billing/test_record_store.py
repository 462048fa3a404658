from datetime import datetime, timedelta, timezone

import pytest

from app.modules.billing.domain.billing.record_store import (
    SubscriptionRecordStore,
    TombstoneEntry,
)
from app.modules.billing.domain.billing.subscription_state import SubscriptionStatus
from app.shared.core.exceptions import InvariantViolationError

PERIOD_END = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_missing_row_reads_as_free(store: SubscriptionRecordStore) -> None:
    record = await store.get("nobody")
    assert record.status == SubscriptionStatus.FREE
    assert record.subscription_id is None
    assert record.exists is False


@pytest.mark.asyncio
async def test_write_inserts_then_merges_named_fields(store: SubscriptionRecordStore) -> None:
    await store.write(
        "user-1",
        status=SubscriptionStatus.PENDING,
        subscription_id="sub_1",
        plan_id="plan_monthly",
    )
    await store.write("user-1", status=SubscriptionStatus.ACTIVE, valid_until=PERIOD_END)

    record = await store.get("user-1")
    assert record.exists is True
    assert record.status == SubscriptionStatus.ACTIVE
    # Fields not named in the second write are preserved.
    assert record.subscription_id == "sub_1"
    assert record.plan_id == "plan_monthly"
    assert record.valid_until == PERIOD_END
    assert record.updated_at is not None


@pytest.mark.asyncio
async def test_find_by_subscription_id(store: SubscriptionRecordStore) -> None:
    await store.write("user-1", status=SubscriptionStatus.PENDING, subscription_id="sub_1")
    await store.write("user-2", status=SubscriptionStatus.PENDING, subscription_id="sub_2")

    found = await store.find_by_subscription_id("sub_2")
    assert found is not None
    assert found.user_id == "user-2"
    assert await store.find_by_subscription_id("sub_missing") is None


@pytest.mark.asyncio
async def test_write_rejects_free_with_subscription_id(store: SubscriptionRecordStore) -> None:
    with pytest.raises(InvariantViolationError):
        await store.write("user-1", status=SubscriptionStatus.FREE, subscription_id="sub_1")
    assert (await store.get("user-1")).exists is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status",
    [
        SubscriptionStatus.PENDING,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.PENDING_CANCEL,
    ],
)
async def test_write_requires_subscription_id(
    store: SubscriptionRecordStore, status: SubscriptionStatus
) -> None:
    with pytest.raises(InvariantViolationError, match="requires a subscription_id"):
        await store.write("user-1", status=status)


@pytest.mark.asyncio
async def test_invariants_checked_against_merged_record(store: SubscriptionRecordStore) -> None:
    await store.write(
        "user-1", status=SubscriptionStatus.ACTIVE, subscription_id="sub_1", valid_until=PERIOD_END
    )
    # Moving to free without clearing the stored id would leave an illegal row.
    with pytest.raises(InvariantViolationError):
        await store.write("user-1", status=SubscriptionStatus.FREE)


@pytest.mark.asyncio
async def test_tombstone_resolves_until_expiry(store: SubscriptionRecordStore) -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    await store.add_tombstone(
        "sub_old", "user-1", expires_at=now + timedelta(minutes=15), plan_id="plan_monthly"
    )
    await store.db.commit()

    assert await store.resolve_tombstone("sub_old", now) == TombstoneEntry(
        user_id="user-1", plan_id="plan_monthly"
    )
    assert await store.resolve_tombstone("sub_old", now + timedelta(minutes=16)) is None
    assert await store.resolve_tombstone("sub_other", now) is None


@pytest.mark.asyncio
async def test_purge_expired_tombstones(store: SubscriptionRecordStore) -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    await store.add_tombstone("sub_old", "user-1", expires_at=now - timedelta(seconds=1))
    await store.add_tombstone("sub_live", "user-2", expires_at=now + timedelta(minutes=5))
    await store.db.commit()

    assert await store.purge_expired_tombstones(now) == 1
    await store.db.commit()
    assert (await store.resolve_tombstone("sub_live", now)).user_id == "user-2"
