# routes/subscription.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from core.database import get_session
from core.security import get_current_admin, get_current_user
from models.models import SubscriptionRecord, User
from schemas.subscription_schema import (
    CancellationRead,
    CheckoutRequest,
    PaymentRead,
    RedirectRead,
    SubscriptionRead,
)
from services.cancellation import CancellationRequester
from services.checkout import CheckoutService
from services.payment_ledger import PaymentLedger
from services.status_clock import is_blocked, shows_banner
from services.status_query import StatusQueryService
from services.stripe_gateway import StripeGateway, get_payment_gateway

router = APIRouter(prefix="/subscription", tags=["Subscription"])


def to_subscription_read(record: SubscriptionRecord) -> SubscriptionRead:
    return SubscriptionRead(
        tenant_key=record.tenant_key,
        status=record.status,
        valid_until=record.valid_until,
        trial_started_at=record.trial_started_at,
        current_plan_key=record.current_plan_key,
        updated_at=record.updated_at,
        is_blocked=is_blocked(record.status),
        show_banner=shows_banner(record.status),
    )


def request_origin(request: Request) -> Optional[str]:
    return request.headers.get("origin")


# -------------------------
# Status
# -------------------------
@router.get("/status", response_model=SubscriptionRead)
def get_subscription_status(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Current subscription of the caller's tenant; starts the trial on first call."""
    record = StatusQueryService(session).get_status(current_user)
    return to_subscription_read(record)


# -------------------------
# Payment history
# -------------------------
@router.get("/payments", response_model=List[PaymentRead])
def get_payment_history(
    limit: int = Query(50, ge=1, le=200),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_admin),
):
    return PaymentLedger(session).history(current_user.tenant_key, limit=limit)


# -------------------------
# Cancellation
# -------------------------
@router.post("/cancel", response_model=CancellationRead)
def cancel_subscription(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Stop auto-renewal at the end of the paid period. Access is not revoked here."""
    result = CancellationRequester(session, gateway).request_cancel_at_period_end(current_user)
    return CancellationRead(
        scheduled=result.scheduled,
        period_end=result.period_end,
        subscription_id=result.subscription_id,
    )


# -------------------------
# Checkout / Portal
# -------------------------
@router.post("/checkout", response_model=RedirectRead)
def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    url = CheckoutService(session, gateway).create_checkout(current_user, payload.plan_key, request_origin(request))
    return RedirectRead(url=url)


@router.post("/portal", response_model=RedirectRead)
def open_customer_portal(
    request: Request,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    url = CheckoutService(session, gateway).create_portal(current_user, request_origin(request))
    return RedirectRead(url=url)
