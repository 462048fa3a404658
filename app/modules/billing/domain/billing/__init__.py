"""Billing Services."""

from app.modules.billing.domain.billing.entitlement_policy import has_premium_access
from app.modules.billing.domain.billing.lifecycle import (
    AbortOutcome,
    CancelOutcome,
    CreatedSubscription,
    ReconciliationResult,
    SubscriptionLifecycleManager,
    WebhookEvent,
)
from app.modules.billing.domain.billing.plan_catalog import PlanCatalog
from app.modules.billing.domain.billing.razorpay_client import RazorpayClient
from app.modules.billing.domain.billing.record_store import SubscriptionRecordStore
from app.modules.billing.domain.billing.signature import SignatureVerifier
from app.modules.billing.domain.billing.subscription_state import (
    LifecycleEvent,
    SubscriptionRecord,
    SubscriptionStatus,
)
from app.modules.billing.domain.billing.webhook_handler import WebhookIngestionHandler


__all__ = [
    "AbortOutcome",
    "CancelOutcome",
    "CreatedSubscription",
    "LifecycleEvent",
    "PlanCatalog",
    "RazorpayClient",
    "ReconciliationResult",
    "SignatureVerifier",
    "SubscriptionLifecycleManager",
    "SubscriptionRecord",
    "SubscriptionRecordStore",
    "SubscriptionStatus",
    "WebhookEvent",
    "WebhookIngestionHandler",
    "has_premium_access",
]
