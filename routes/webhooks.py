# routes/webhooks.py
import logging

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from core.database import get_session
from schemas.subscription_schema import WebhookAck
from services.billing_ingestor import BillingEventIngestor
from services.stripe_gateway import StripeGateway, get_payment_gateway

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """
    Stripe event endpoint.

    2xx for handled, duplicate, unroutable and ignored events; InvalidSignature
    (400) and StoreUnavailable (503) propagate to the exception handler so
    Stripe retries the delivery.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    # Ingestion does blocking DB and Stripe I/O
    ingestor = BillingEventIngestor(session, gateway)
    result = await run_in_threadpool(ingestor.ingest, payload, sig_header)
    return WebhookAck(outcome=result.outcome.value, event_id=result.event_id, event_type=result.event_type)
