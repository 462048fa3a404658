"""Webhook ingestion for Razorpay subscription events."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from app.modules.billing.domain.billing.lifecycle import (
    SubscriptionLifecycleManager,
    WebhookEvent,
)
from app.modules.billing.domain.billing.razorpay_client import parse_epoch
from app.modules.billing.domain.billing.signature import SignatureVerifier
from app.modules.billing.domain.billing.subscription_state import LifecycleEvent

logger = structlog.get_logger()

EVENT_KINDS: dict[str, LifecycleEvent] = {
    "subscription.charged": LifecycleEvent.WEBHOOK_CHARGED,
    "subscription.cancelled": LifecycleEvent.WEBHOOK_CANCELLED,
    "payment.failed": LifecycleEvent.WEBHOOK_PAYMENT_FAILED,
}


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    text: str


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    section = payload.get(name)
    if not isinstance(section, dict):
        return {}
    entity = section.get("entity")
    return entity if isinstance(entity, dict) else {}


def extract_subscription_id(payload: dict[str, Any]) -> Optional[str]:
    """Subscription id from the subscription entity, else from the payment entity."""
    candidates = (
        _entity(payload, "subscription").get("id"),
        _entity(payload, "payment").get("subscription_id"),
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


class WebhookIngestionHandler:
    """Authenticates, parses and dispatches gateway webhook deliveries.

    Only a failure while applying an event answers 500, which makes the
    gateway redeliver. Everything else is either rejected (4xx) or
    acknowledged (200) so it is not retried.
    """

    def __init__(
        self, verifier: SignatureVerifier, manager: SubscriptionLifecycleManager
    ):
        self.verifier = verifier
        self.manager = manager

    async def handle(
        self, method: str, body: bytes, signature: Optional[str]
    ) -> WebhookResponse:
        if method.upper() != "POST":
            return WebhookResponse(405, "Method Not Allowed")

        if not signature or not signature.strip():
            logger.warning("webhook_missing_signature", payload_len=len(body))
            return WebhookResponse(400, "Missing signature")

        if not self.verifier.verify(body, signature):
            return WebhookResponse(400, "Invalid signature")

        try:
            event = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("webhook_invalid_json", payload_len=len(body))
            return WebhookResponse(400, "Invalid JSON payload")
        if not isinstance(event, dict):
            logger.warning("webhook_payload_not_object")
            return WebhookResponse(400, "Invalid JSON payload")

        event_type = event.get("event")
        if not isinstance(event_type, str) or not event_type:
            logger.warning("webhook_missing_event_type")
            return WebhookResponse(400, "Missing event type")

        logger.info("webhook_received", gateway_event=event_type)

        kind = EVENT_KINDS.get(event_type)
        if kind is None:
            logger.info("webhook_event_ignored", gateway_event=event_type)
            return WebhookResponse(200, "OK")

        payload = event.get("payload")
        payload = payload if isinstance(payload, dict) else {}
        subscription_id = extract_subscription_id(payload)
        if subscription_id is None:
            logger.warning("webhook_missing_subscription_id", gateway_event=event_type)
            return WebhookResponse(200, "OK")

        period_end = None
        if kind == LifecycleEvent.WEBHOOK_CHARGED:
            period_end = parse_epoch(_entity(payload, "subscription").get("current_end"))

        try:
            await self.manager.apply_webhook_event(
                WebhookEvent(
                    kind=kind,
                    subscription_id=subscription_id,
                    gateway_event=event_type,
                    period_end=period_end,
                )
            )
        except Exception:
            logger.exception(
                "webhook_processing_failed",
                gateway_event=event_type,
                subscription_id=subscription_id,
            )
            return WebhookResponse(500, "Webhook processing failed")

        return WebhookResponse(200, "OK")
