"""
Billing API Endpoints - Razorpay Subscriptions

Provides:
- POST /billing/subscriptions - Start a pending subscription
- POST /billing/subscriptions/cancel - Cancel at the end of the billing cycle
- POST /billing/subscriptions/abort - Abandon a pending checkout
- GET /billing/subscription - Current subscription status
- /billing/webhook - Razorpay webhook deliveries
"""

from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.billing.api.v1.billing_models import (
    AbortSubscriptionRequest,
    AbortSubscriptionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    MessageResponse,
    SubscriptionResponse,
)
from app.modules.billing.domain.billing.entitlement_policy import has_premium_access
from app.modules.billing.domain.billing.lifecycle import SubscriptionLifecycleManager
from app.modules.billing.domain.billing.record_store import SubscriptionRecordStore
from app.modules.billing.domain.billing.runtime import (
    BillingRuntime,
    get_billing_runtime,
    get_lifecycle_manager,
    get_webhook_handler,
)
from app.modules.billing.domain.billing.webhook_handler import WebhookIngestionHandler
from app.shared.core.auth import CurrentUser, get_current_user
from app.shared.db.session import get_db

logger = structlog.get_logger()
router = APIRouter(tags=["Billing"])

RAZORPAY_SIGNATURE_HEADER = "X-Razorpay-Signature"


@router.post("/subscriptions", response_model=CreateSubscriptionResponse)
async def create_subscription(
    payload: CreateSubscriptionRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
) -> CreateSubscriptionResponse:
    """Create a gateway subscription; the client completes checkout with the returned id."""
    created = await manager.create_subscription(user.id, payload.plan_id)
    return CreateSubscriptionResponse(
        subscription_id=created.subscription_id,
        gateway_public_key=created.gateway_public_key,
    )


@router.post("/subscriptions/cancel", response_model=MessageResponse)
async def cancel_subscription(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
) -> MessageResponse:
    outcome = await manager.cancel_subscription(user.id)
    return MessageResponse(message=outcome.message)


@router.post("/subscriptions/abort", response_model=AbortSubscriptionResponse)
async def abort_subscription(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    payload: Optional[AbortSubscriptionRequest] = Body(default=None),
    manager: SubscriptionLifecycleManager = Depends(get_lifecycle_manager),
) -> AbortSubscriptionResponse:
    """Abandon a pending checkout. Gateway cleanup failures do not fail the request."""
    outcome = await manager.abort_pending(
        user.id, payload.subscription_id if payload else None
    )
    return AbortSubscriptionResponse(
        message=outcome.message, gateway_cancelled=outcome.gateway_cancelled
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    """Get current subscription status for the caller."""
    record = await SubscriptionRecordStore(db).get(user.id)
    return SubscriptionResponse(
        status=record.status.value,
        plan_id=record.plan_id,
        subscription_id=record.subscription_id,
        valid_until=record.valid_until,
        is_premium=has_premium_access(record),
    )


@router.api_route(
    "/webhook",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    response_class=PlainTextResponse,
)
async def handle_webhook(
    request: Request,
    runtime: BillingRuntime = Depends(get_billing_runtime),
    handler: WebhookIngestionHandler = Depends(get_webhook_handler),
) -> PlainTextResponse:
    """
    Handle Razorpay webhook events.

    The body is read raw; the signature covers the exact bytes sent.
    """
    body = await request.body()
    signature = request.headers.get(runtime.signature_header) or request.headers.get(
        RAZORPAY_SIGNATURE_HEADER
    )
    result = await handler.handle(request.method, body, signature)
    return PlainTextResponse(result.text, status_code=result.status_code)
