"""
Persistence adapter for per-user subscription records.

Writes are merges of named columns (``UPDATE ... SET`` on the listed fields
only), never whole-row replaces, so a concurrent transition touching other
fields is not clobbered. Invariants are checked before any SQL is issued.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import SubscriptionTombstone, UserSubscription
from app.modules.billing.domain.billing.subscription_state import (
    SubscriptionRecord,
    SubscriptionStatus,
    validate_record_invariants,
)

logger = structlog.get_logger()


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class TombstoneEntry:
    user_id: str
    plan_id: Optional[str]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on round-trip.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_record(row: UserSubscription) -> SubscriptionRecord:
    try:
        status = SubscriptionStatus(row.status)
    except ValueError:
        logger.warning(
            "subscription_status_unrecognized", user_id=row.user_id, status=row.status
        )
        status = SubscriptionStatus.FREE
    return SubscriptionRecord(
        user_id=row.user_id,
        status=status,
        subscription_id=row.subscription_id,
        plan_id=row.plan_id,
        valid_until=_as_utc(row.valid_until),
        updated_at=_as_utc(row.updated_at),
        exists=True,
    )


class SubscriptionRecordStore:
    """Point reads, indexed lookup by subscription_id, and merge writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> SubscriptionRecord:
        """Return the user's record; a missing row reads as a free record."""
        row = await self._get_row(user_id)
        if row is None:
            return SubscriptionRecord.free(user_id)
        return _to_record(row)

    async def find_by_subscription_id(
        self, subscription_id: str
    ) -> Optional[SubscriptionRecord]:
        result = await self.db.execute(
            select(UserSubscription).where(
                UserSubscription.subscription_id == subscription_id
            )
        )
        rows = list(result.scalars().all())
        if not rows:
            return None
        if len(rows) > 1:
            # One outstanding subscription per user makes this unreachable
            # unless rows were edited by hand.
            logger.error(
                "subscription_id_matches_multiple_users",
                subscription_id=subscription_id,
                user_ids=[r.user_id for r in rows],
            )
        return _to_record(rows[0])

    async def write(
        self,
        user_id: str,
        *,
        status: SubscriptionStatus,
        subscription_id: Any = UNSET,
        plan_id: Any = UNSET,
        valid_until: Any = UNSET,
        current: Optional[SubscriptionRecord] = None,
        commit: bool = True,
    ) -> SubscriptionRecord:
        """
        Merge the named fields into the user's record, inserting it if absent.

        Fields left as UNSET keep their stored value. ``current`` is the
        snapshot the caller based its decision on; it is re-read when omitted.
        """
        if current is None:
            current = await self.get(user_id)

        merged = current.with_changes(
            status=status,
            subscription_id=(
                current.subscription_id if subscription_id is UNSET else subscription_id
            ),
            plan_id=current.plan_id if plan_id is UNSET else plan_id,
            valid_until=(
                current.valid_until if valid_until is UNSET else valid_until
            ),
        )
        validate_record_invariants(
            merged.status, merged.subscription_id, merged.valid_until
        )

        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        if subscription_id is not UNSET:
            values["subscription_id"] = subscription_id
        if plan_id is not UNSET:
            values["plan_id"] = plan_id
        if valid_until is not UNSET:
            values["valid_until"] = valid_until

        result = await self.db.execute(
            update(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .values(**values)
        )
        if getattr(result, "rowcount", 0) == 0:
            self.db.add(
                UserSubscription(
                    user_id=user_id,
                    status=merged.status.value,
                    subscription_id=merged.subscription_id,
                    plan_id=merged.plan_id,
                    valid_until=merged.valid_until,
                    created_at=now,
                    updated_at=now,
                )
            )

        if commit:
            await self.db.commit()
        return merged.with_changes(updated_at=now, exists=True)

    async def add_tombstone(
        self,
        subscription_id: str,
        user_id: str,
        expires_at: datetime,
        plan_id: Optional[str] = None,
    ) -> None:
        """Remember which user and plan an about-to-be-cleared subscription_id belonged to."""
        existing = await self.db.get(SubscriptionTombstone, subscription_id)
        if existing is not None:
            existing.user_id = user_id
            existing.plan_id = plan_id
            existing.expires_at = expires_at
            return
        self.db.add(
            SubscriptionTombstone(
                subscription_id=subscription_id,
                user_id=user_id,
                plan_id=plan_id,
                created_at=datetime.now(timezone.utc),
                expires_at=expires_at,
            )
        )

    async def resolve_tombstone(
        self, subscription_id: str, now: Optional[datetime] = None
    ) -> Optional[TombstoneEntry]:
        """Return the owner of an unexpired tombstone for ``subscription_id``."""
        now = now or datetime.now(timezone.utc)
        tombstone = await self.db.get(SubscriptionTombstone, subscription_id)
        if tombstone is None:
            return None
        expires_at = _as_utc(tombstone.expires_at)
        if expires_at is None or expires_at <= now:
            return None
        return TombstoneEntry(user_id=tombstone.user_id, plan_id=tombstone.plan_id)

    async def purge_expired_tombstones(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(SubscriptionTombstone).where(SubscriptionTombstone.expires_at <= now)
        )
        expired = list(result.scalars().all())
        for tombstone in expired:
            await self.db.delete(tombstone)
        purged = len(expired)
        if purged:
            logger.info("subscription_tombstones_purged", count=purged)
        return purged

    async def rollback(self) -> None:
        await self.db.rollback()

    async def _get_row(self, user_id: str) -> Optional[UserSubscription]:
        result = await self.db.execute(
            select(UserSubscription).where(UserSubscription.user_id == user_id)
        )
        return result.scalar_one_or_none()
