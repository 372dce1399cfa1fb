from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class EntitlementState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    NONE = "none"


# Store inputs
class SubscriptionCreate(BaseModel):
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_session_id: str
    customer_email: str
    status: str
    current_period_end: Optional[datetime] = None


# Stripe webhook envelope
class EventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class StripeEvent(BaseModel):
    id: Optional[str] = None
    type: str
    data: EventData
    created: Optional[int] = None
    livemode: Optional[bool] = None


class WebhookAck(BaseModel):
    received: bool = True


# Read API
class SubscriptionStatusResponse(BaseModel):
    has_subscription: bool = Field(..., alias="hasSubscription")
    status: EntitlementState
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    message: Optional[str] = None

    class Config:
        populate_by_name = True


class OnchainStatusResponse(BaseModel):
    wallet_address: str = Field(..., alias="walletAddress")
    has_onchain_data: bool = Field(False, alias="hasOnchainData")
    message: str

    class Config:
        populate_by_name = True


# Write API
class CreateCheckoutRequest(BaseModel):
    wallet_address: Optional[str] = Field(None, alias="walletAddress")

    class Config:
        populate_by_name = True


class CheckoutResponse(BaseModel):
    session_id: str = Field(..., alias="sessionId")

    class Config:
        populate_by_name = True
