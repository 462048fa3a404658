"""Razorpay subscription API client."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
import structlog

from app.shared.core.exceptions import ConfigurationError, GatewayError
from app.shared.core.http import get_http_client

logger = structlog.get_logger()


@dataclass(frozen=True)
class GatewaySubscription:
    subscription_id: str
    status: Optional[str] = None
    plan_id: Optional[str] = None


@dataclass(frozen=True)
class GatewayCancellation:
    status: Optional[str]
    current_period_end: Optional[datetime] = None
    plan_id: Optional[str] = None
    ended_at: Optional[datetime] = None

    @property
    def is_immediate(self) -> bool:
        """True when the gateway reports the subscription as already ended."""
        return self.status == "cancelled" and self.ended_at is not None


class GatewayClient(Protocol):
    """Contract the lifecycle manager relies on; tests inject fakes."""

    @property
    def public_key(self) -> Optional[str]: ...

    async def create_subscription(
        self, plan_id: str, quantity: int = 1
    ) -> GatewaySubscription: ...

    async def cancel_subscription(
        self, subscription_id: str, cancel_at_cycle_end: bool
    ) -> GatewayCancellation: ...


def parse_epoch(value: Any) -> Optional[datetime]:
    """Convert a gateway epoch-seconds timestamp into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class RazorpayClient:
    """Async wrapper for Razorpay subscription operations."""

    BASE_URL = "https://api.razorpay.com/v1"

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        *,
        base_url: str = BASE_URL,
        timeout: float = 15.0,
        total_count: int = 120,
    ) -> None:
        if not key_id or not key_secret:
            raise ConfigurationError("RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET not configured")

        self._key_id = key_id
        self._auth = httpx.BasicAuth(key_id, key_secret)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.total_count = total_count

    @property
    def public_key(self) -> Optional[str]:
        return self._key_id

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        client = get_http_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}/{endpoint}",
                auth=self._auth,
                json=data,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "razorpay_api_error",
                endpoint=endpoint,
                gateway_status=exc.response.status_code,
            )
            raise GatewayError(
                f"Razorpay rejected {endpoint}",
                gateway_status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("razorpay_transport_error", endpoint=endpoint, error=str(exc))
            raise GatewayError(f"Razorpay unreachable for {endpoint}") from exc
        except ValueError as exc:
            logger.error("razorpay_invalid_json", endpoint=endpoint)
            raise GatewayError("Invalid Razorpay response payload") from exc

        if not isinstance(payload, dict):
            raise GatewayError("Invalid Razorpay response payload type")
        return payload

    async def create_subscription(
        self, plan_id: str, quantity: int = 1
    ) -> GatewaySubscription:
        """Create a subscription for the plan; the customer completes checkout separately."""
        data = {
            "plan_id": plan_id,
            "quantity": quantity,
            "total_count": self.total_count,
            "customer_notify": 1,
        }
        payload = await self._request("POST", "subscriptions", data)
        subscription_id = payload.get("id")
        if not isinstance(subscription_id, str) or not subscription_id:
            raise GatewayError("Razorpay subscription response missing id")
        return GatewaySubscription(
            subscription_id=subscription_id,
            status=payload.get("status"),
            plan_id=payload.get("plan_id"),
        )

    async def cancel_subscription(
        self, subscription_id: str, cancel_at_cycle_end: bool
    ) -> GatewayCancellation:
        """Cancel immediately, or at the end of the current billing cycle."""
        payload = await self._request(
            "POST",
            f"subscriptions/{subscription_id}/cancel",
            {"cancel_at_cycle_end": 1 if cancel_at_cycle_end else 0},
        )
        return GatewayCancellation(
            status=payload.get("status"),
            current_period_end=parse_epoch(payload.get("current_end")),
            plan_id=payload.get("plan_id"),
            ended_at=parse_epoch(payload.get("ended_at")),
        )
