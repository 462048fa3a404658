"""
Subscription lifecycle state machine.

User actions (create, cancel, abort) and gateway webhooks both land here and
are applied through the transition table in ``subscription_state``. Every
transition overwrites the fields it owns, so replaying an event is harmless.

Known limitation: webhook delivery order is not tracked. A stale
``subscription.charged`` delivered after ``subscription.cancelled`` moves the
record back to ``active`` (last write wins).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog

from app.modules.billing.domain.billing.plan_catalog import PlanCatalog
from app.modules.billing.domain.billing.razorpay_client import GatewayClient
from app.modules.billing.domain.billing.record_store import (
    UNSET,
    SubscriptionRecordStore,
)
from app.modules.billing.domain.billing.subscription_state import (
    LifecycleEvent,
    SubscriptionRecord,
    SubscriptionStatus,
    allowed_sources,
    can_transition,
)
from app.shared.core.exceptions import (
    FailedPreconditionError,
    GatewayError,
    NotFoundError,
    OrphanedSubscriptionError,
)
from app.shared.core.logging import audit_log

logger = structlog.get_logger()

WEBHOOK_TARGETS: dict[LifecycleEvent, SubscriptionStatus] = {
    LifecycleEvent.WEBHOOK_CHARGED: SubscriptionStatus.ACTIVE,
    LifecycleEvent.WEBHOOK_CANCELLED: SubscriptionStatus.CANCELLED,
    LifecycleEvent.WEBHOOK_PAYMENT_FAILED: SubscriptionStatus.FAILED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CreatedSubscription:
    subscription_id: str
    gateway_public_key: Optional[str]
    record: SubscriptionRecord


@dataclass(frozen=True)
class CancelOutcome:
    record: SubscriptionRecord
    message: str


@dataclass(frozen=True)
class AbortOutcome:
    """
    Result of a best-effort abort. ``gateway_error`` is a soft failure: local
    state was still reset, but the gateway-side subscription may linger and
    needs manual reconciliation.
    """

    record: SubscriptionRecord
    subscription_id: str
    gateway_error: Optional[GatewayError] = None

    @property
    def gateway_cancelled(self) -> bool:
        return self.gateway_error is None

    @property
    def message(self) -> str:
        if self.gateway_cancelled:
            return "Subscription aborted."
        return "Subscription cleared. The gateway subscription will be reconciled manually."


@dataclass(frozen=True)
class WebhookEvent:
    kind: LifecycleEvent
    subscription_id: str
    gateway_event: str
    period_end: Optional[datetime] = None


@dataclass(frozen=True)
class ReconciliationResult:
    matched: bool
    user_id: Optional[str] = None
    record: Optional[SubscriptionRecord] = None
    via_tombstone: bool = False


class SubscriptionLifecycleManager:
    """Validates and applies subscription transitions for one user record."""

    def __init__(
        self,
        store: SubscriptionRecordStore,
        gateway: GatewayClient,
        catalog: PlanCatalog,
        *,
        tombstone_grace: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.catalog = catalog
        self.tombstone_grace = tombstone_grace
        self.clock = clock

    async def create_subscription(
        self, user_id: str, plan_id: Optional[str]
    ) -> CreatedSubscription:
        """free -> pending: create the gateway subscription and record its id."""
        plan_id = self.catalog.require_allowed(plan_id)
        current = await self.store.get(user_id)

        if current.subscription_id:
            if current.status in allowed_sources(LifecycleEvent.USER_ABORT):
                raise FailedPreconditionError(
                    f"The previous subscription is {current.status.value}. "
                    "Abort it to clear it before starting a new one."
                )
            raise FailedPreconditionError(
                "A subscription already exists. Cancel it first."
            )
        if current.status not in allowed_sources(LifecycleEvent.CREATE_REQUESTED):
            raise FailedPreconditionError(
                f"Cannot start a subscription while status is {current.status.value}"
            )

        created = await self.gateway.create_subscription(plan_id)
        logger.info(
            "gateway_subscription_created",
            user_id=user_id,
            subscription_id=created.subscription_id,
            plan_id=plan_id,
        )

        try:
            record = await self.store.write(
                user_id,
                status=SubscriptionStatus.PENDING,
                subscription_id=created.subscription_id,
                plan_id=plan_id,
                valid_until=None,
                current=current,
            )
        except Exception as exc:
            await self.store.rollback()
            logger.error(
                "subscription_create_local_write_failed",
                user_id=user_id,
                orphaned_subscription_id=created.subscription_id,
                error=str(exc),
            )
            raise OrphanedSubscriptionError(
                created.subscription_id, details={"user_id": user_id}
            ) from exc

        audit_log(
            "subscription_created",
            user_id,
            {"subscription_id": created.subscription_id, "plan_id": plan_id},
        )
        return CreatedSubscription(
            subscription_id=created.subscription_id,
            gateway_public_key=self.gateway.public_key,
            record=record,
        )

    async def cancel_subscription(self, user_id: str) -> CancelOutcome:
        """pending/active/pending_cancel -> cancelled or pending_cancel."""
        current = await self.store.get(user_id)
        if not current.exists:
            raise NotFoundError("No billing profile found for this user")
        if not current.subscription_id:
            raise FailedPreconditionError("No active subscription to cancel")
        if current.status not in allowed_sources(LifecycleEvent.USER_CANCEL):
            raise FailedPreconditionError(
                f"Subscription is {current.status.value}; there is nothing to cancel"
            )

        # Gateway failure leaves the local record untouched.
        cancellation = await self.gateway.cancel_subscription(
            current.subscription_id, cancel_at_cycle_end=True
        )
        target = (
            SubscriptionStatus.CANCELLED
            if cancellation.is_immediate
            else SubscriptionStatus.PENDING_CANCEL
        )
        valid_until: Any = (
            cancellation.current_period_end
            if cancellation.current_period_end is not None
            else UNSET
        )

        try:
            record = await self.store.write(
                user_id,
                status=target,
                valid_until=valid_until,
                current=current,
            )
        except Exception as exc:
            # Gateway and local state diverge until the next webhook reconciles them.
            await self.store.rollback()
            logger.error(
                "subscription_cancel_local_write_failed",
                user_id=user_id,
                subscription_id=current.subscription_id,
                gateway_status=cancellation.status,
                error=str(exc),
            )
            raise

        audit_log(
            "subscription_cancelled",
            user_id,
            {
                "subscription_id": current.subscription_id,
                "from_status": current.status.value,
                "to_status": target.value,
            },
        )
        if target == SubscriptionStatus.CANCELLED:
            message = "Your subscription has been cancelled."
        elif record.valid_until is not None:
            message = (
                "Your subscription will end on "
                f"{record.valid_until.date().isoformat()}."
            )
        else:
            message = "Your subscription will end at the close of the billing cycle."
        return CancelOutcome(record=record, message=message)

    async def abort_pending(
        self, user_id: str, subscription_id: Optional[str] = None
    ) -> AbortOutcome:
        """
        pending/cancelled/failed -> free, tolerating gateway cancel failure.

        Clearing an ended subscription is what lets the user create a new one.
        ``subscription_id`` lets a caller clean up a gateway subscription whose
        local record was never written (create partially failed).
        """
        current = await self.store.get(user_id)
        target_id = subscription_id or current.subscription_id
        if not target_id:
            raise FailedPreconditionError("No pending subscription to abort")

        owns_record = current.subscription_id == target_id
        if current.subscription_id and not owns_record:
            raise FailedPreconditionError(
                "Subscription does not match the pending subscription on file"
            )
        if owns_record and current.status not in allowed_sources(
            LifecycleEvent.USER_ABORT
        ):
            raise FailedPreconditionError(
                f"Only a pending or ended subscription can be aborted (status is {current.status.value})"
            )
        if not owns_record:
            holder = await self.store.find_by_subscription_id(target_id)
            if holder is not None:
                raise FailedPreconditionError(
                    "Subscription does not match the pending subscription on file"
                )

        gateway_error: Optional[GatewayError] = None
        try:
            # Already ended at the gateway; nothing to cancel there.
            if not (owns_record and current.status == SubscriptionStatus.CANCELLED):
                await self.gateway.cancel_subscription(
                    target_id, cancel_at_cycle_end=False
                )
        except GatewayError as exc:
            gateway_error = exc
            logger.warning(
                "subscription_abort_gateway_cancel_failed",
                user_id=user_id,
                subscription_id=target_id,
                gateway_status=exc.gateway_status,
                error=exc.message,
                msg="Local state will be cleared; gateway subscription needs manual reconciliation",
            )

        record = current
        if owns_record:
            now = self.clock()
            await self.store.purge_expired_tombstones(now)
            await self.store.add_tombstone(
                target_id,
                user_id,
                expires_at=now + self.tombstone_grace,
                plan_id=current.plan_id,
            )
            record = await self.store.write(
                user_id,
                status=SubscriptionStatus.FREE,
                subscription_id=None,
                plan_id=None,
                valid_until=None,
                current=current,
            )

        audit_log(
            "subscription_aborted",
            user_id,
            {
                "subscription_id": target_id,
                "from_status": current.status.value,
                "gateway_cancelled": gateway_error is None,
                "local_record_cleared": owns_record,
            },
        )
        return AbortOutcome(
            record=record, subscription_id=target_id, gateway_error=gateway_error
        )

    async def apply_webhook_event(self, event: WebhookEvent) -> ReconciliationResult:
        """Apply a gateway-reported transition to the record owning the subscription."""
        target = WEBHOOK_TARGETS[event.kind]
        log = logger.bind(
            subscription_id=event.subscription_id, gateway_event=event.gateway_event
        )

        record = await self.store.find_by_subscription_id(event.subscription_id)
        via_tombstone = False
        plan_id: Any = UNSET
        if record is None:
            resolved = await self._resolve_through_tombstone(event)
            if resolved is None:
                log.info("webhook_subscription_unmatched")
                return ReconciliationResult(matched=False)
            # The abort cleared plan_id; re-attaching restores it.
            record, plan_id = resolved
            via_tombstone = True

        # Webhook rows currently admit every source status; this only fires if
        # the table is narrowed.
        if not can_transition(event.kind, record.status, target):
            log.warning(
                "webhook_transition_rejected",
                user_id=record.user_id,
                status=record.status.value,
            )
            return ReconciliationResult(matched=True, user_id=record.user_id, record=record)

        valid_until: Any = UNSET
        if event.kind == LifecycleEvent.WEBHOOK_CHARGED and event.period_end is not None:
            valid_until = event.period_end

        updated = await self.store.write(
            record.user_id,
            status=target,
            subscription_id=event.subscription_id,
            plan_id=plan_id,
            valid_until=valid_until,
            current=record,
        )
        log.info(
            "webhook_transition_applied",
            user_id=record.user_id,
            from_status=record.status.value,
            to_status=target.value,
            via_tombstone=via_tombstone,
        )
        audit_log(
            "subscription_reconciled",
            record.user_id,
            {
                "subscription_id": event.subscription_id,
                "gateway_event": event.gateway_event,
                "to_status": target.value,
            },
        )
        return ReconciliationResult(
            matched=True,
            user_id=record.user_id,
            record=updated,
            via_tombstone=via_tombstone,
        )

    async def _resolve_through_tombstone(
        self, event: WebhookEvent
    ) -> Optional[tuple[SubscriptionRecord, Optional[str]]]:
        """Return the aborted user's record and the plan it was on."""
        tombstone = await self.store.resolve_tombstone(
            event.subscription_id, self.clock()
        )
        if tombstone is None:
            return None

        user_id = tombstone.user_id
        record = await self.store.get(user_id)
        if record.subscription_id and record.subscription_id != event.subscription_id:
            logger.warning(
                "webhook_tombstone_superseded",
                user_id=user_id,
                subscription_id=event.subscription_id,
                current_subscription_id=record.subscription_id,
            )
            return None

        # The abort already reset the record; only a charge needs to re-attach
        # the old subscription so the paying user gets access.
        if event.kind != LifecycleEvent.WEBHOOK_CHARGED:
            logger.info(
                "webhook_tombstone_event_ignored",
                user_id=user_id,
                subscription_id=event.subscription_id,
                gateway_event=event.gateway_event,
            )
            return None
        return record, tombstone.plan_id
