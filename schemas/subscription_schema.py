# subscription_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import PlanKey, SubscriptionStatus


# ---------------------------
# Subscription status
# ---------------------------
class SubscriptionRead(BaseModel):
    tenant_key: str
    status: SubscriptionStatus
    valid_until: datetime
    trial_started_at: datetime
    current_plan_key: Optional[PlanKey] = None
    updated_at: Optional[datetime] = None

    # UI consumer contract: banner on OVERDUE/BLOCKED, block screen on BLOCKED
    is_blocked: bool = False
    show_banner: bool = False

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Cancellation
# ---------------------------
class CancellationRead(BaseModel):
    scheduled: bool
    period_end: Optional[datetime] = None
    subscription_id: str


# ---------------------------
# Checkout / Portal
# ---------------------------
class CheckoutRequest(BaseModel):
    plan_key: str = Field(..., max_length=20, description="monthly | quarterly | semiannual | annual")


class RedirectRead(BaseModel):
    url: str


# ---------------------------
# Payment ledger
# ---------------------------
class PaymentRead(BaseModel):
    id: int
    tenant_key: str
    stripe_event_id: str
    event_type: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    paid_at: datetime
    plan_key: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    needs_review: bool = False

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Webhook acknowledgement
# ---------------------------
class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
