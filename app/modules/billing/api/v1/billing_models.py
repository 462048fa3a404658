from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class CreateSubscriptionRequest(BaseModel):
    # Validated against the plan allow-list, not here.
    plan_id: Optional[str] = None


class CreateSubscriptionResponse(BaseModel):
    subscription_id: str
    gateway_public_key: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class AbortSubscriptionRequest(BaseModel):
    subscription_id: Optional[str] = None


class AbortSubscriptionResponse(BaseModel):
    message: str
    gateway_cancelled: bool


class SubscriptionResponse(BaseModel):
    status: str
    plan_id: Optional[str] = None
    subscription_id: Optional[str] = None
    valid_until: Optional[datetime] = None
    is_premium: bool = False
