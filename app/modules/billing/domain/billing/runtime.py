"""
Process-wide billing collaborators and their FastAPI dependencies.

The verifier, gateway client and plan catalog are built once from settings and
kept on ``app.state``; the lifecycle manager is per request because it holds
the request's database session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.billing.domain.billing.lifecycle import SubscriptionLifecycleManager
from app.modules.billing.domain.billing.plan_catalog import PlanCatalog
from app.modules.billing.domain.billing.razorpay_client import (
    GatewayClient,
    RazorpayClient,
)
from app.modules.billing.domain.billing.record_store import SubscriptionRecordStore
from app.modules.billing.domain.billing.signature import SignatureVerifier
from app.modules.billing.domain.billing.webhook_handler import WebhookIngestionHandler
from app.shared.core.config import Settings, get_settings
from app.shared.db.session import get_db

logger = structlog.get_logger()


@dataclass
class BillingRuntime:
    verifier: SignatureVerifier
    gateway: GatewayClient
    catalog: PlanCatalog
    tombstone_grace: timedelta
    signature_header: str = "X-Signature"


def build_billing_runtime(settings: Settings) -> BillingRuntime:
    """Raises ConfigurationError when gateway credentials or the webhook secret are missing."""
    runtime = BillingRuntime(
        verifier=SignatureVerifier(settings.RAZORPAY_WEBHOOK_SECRET),
        gateway=RazorpayClient(
            settings.RAZORPAY_KEY_ID,
            settings.RAZORPAY_KEY_SECRET,
            base_url=settings.RAZORPAY_API_URL,
            timeout=settings.RAZORPAY_TIMEOUT_SECONDS,
            total_count=settings.RAZORPAY_SUBSCRIPTION_TOTAL_COUNT,
        ),
        catalog=PlanCatalog(settings.BILLING_ALLOWED_PLAN_IDS),
        tombstone_grace=timedelta(seconds=settings.BILLING_TOMBSTONE_GRACE_SECONDS),
        signature_header=settings.BILLING_WEBHOOK_SIGNATURE_HEADER,
    )
    logger.info(
        "billing_runtime_initialized",
        plan_count=len(runtime.catalog.plan_ids),
        tombstone_grace_seconds=settings.BILLING_TOMBSTONE_GRACE_SECONDS,
    )
    return runtime


def get_billing_runtime(request: Request) -> BillingRuntime:
    """Return the app's runtime, building it on first use when startup skipped it."""
    state: Any = request.app.state
    runtime = getattr(state, "billing_runtime", None)
    if runtime is None:
        runtime = build_billing_runtime(get_settings())
        state.billing_runtime = runtime
    return runtime


def get_lifecycle_manager(
    runtime: BillingRuntime = Depends(get_billing_runtime),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(
        SubscriptionRecordStore(db),
        runtime.gateway,
        runtime.catalog,
        tombstone_grace=runtime.tombstone_grace,
    )


def get_webhook_handler(
    runtime: BillingRuntime = Depends(get_billing_runtime),
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
) -> WebhookIngestionHandler:
    return WebhookIngestionHandler(runtime.verifier, manager)
