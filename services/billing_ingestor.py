# ================================================================
# services/billing_ingestor.py: Stripe webhook reconciliation
# ================================================================
"""
Applies verified Stripe events to the ledger and the subscription record.

Handled events:
- ``checkout.session.completed``: first subscription; the tenant is routed by
  ``metadata.tenant_key`` set when the checkout session was created.
- ``invoice.paid`` (and the older ``invoice.payment_succeeded``): renewals;
  the tenant is routed by the stored ``stripe_subscription_id``.

Everything else is acknowledged and ignored. The ledger row and the validity
extension are committed in one transaction, so a stored ledger row always
means the extension was applied.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from core.exceptions import PaymentProcessorError, StoreUnavailable, UnroutableEvent
from models.models import PlanKey, as_utc, utcnow
from services.billing_plans import parse_plan_key, plan_duration_from
from services.payment_ledger import PaymentLedger
from services.stripe_gateway import StripeGateway, from_unix
from services.subscription_store import SubscriptionRecordStore

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAID_EVENTS = ("invoice.paid", "invoice.payment_succeeded")


class IngestOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNROUTABLE = "unroutable"
    IGNORED = "ignored"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    event_id: str
    event_type: str
    tenant_key: Optional[str] = None
    valid_until: Optional[datetime] = None
    needs_review: bool = False


@dataclass
class _Payment:
    """Fields common to both event kinds, normalized before the ledger gate."""

    tenant_key: str
    paid_at: datetime
    plan_key: Optional[PlanKey]
    raw_plan_key: str
    stripe_customer_id: Optional[str]
    stripe_subscription_id: Optional[str]
    amount: Optional[float]
    currency: Optional[str]
    stripe_invoice_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


def _ref(value: Any) -> Optional[str]:
    """Stripe sends either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _minor_to_major(amount: Optional[int]) -> Optional[float]:
    if amount is None:
        return None
    return int(amount) / 100


class BillingEventIngestor:
    def __init__(
        self,
        session: Session,
        gateway: StripeGateway,
        store: Optional[SubscriptionRecordStore] = None,
        ledger: Optional[PaymentLedger] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.store = store or SubscriptionRecordStore(session)
        self.ledger = ledger or PaymentLedger(session)

    def ingest(self, payload: bytes, sig_header: Optional[str], now: Optional[datetime] = None) -> IngestResult:
        """
        Verify and apply one webhook delivery.

        Raises ``InvalidSignature`` (reject, sender retries) and
        ``StoreUnavailable`` (reject, sender retries). Unroutable and duplicate
        events return normally so the delivery is acknowledged.
        """
        event = self.gateway.construct_event(payload, sig_header)
        now = as_utc(now) if now else utcnow()

        event_id = event["id"]
        event_type = event["type"]
        data_object = (event.get("data") or {}).get("object") or {}
        logger.info("Received event %s (%s)", event_id, event_type)

        try:
            if event_type == CHECKOUT_COMPLETED:
                payment = self._from_checkout(data_object, now)
            elif event_type in INVOICE_PAID_EVENTS:
                payment = self._from_invoice(data_object, now)
            else:
                logger.info("Ignoring unhandled event type %s", event_type)
                return IngestResult(IngestOutcome.IGNORED, event_id, event_type)
        except UnroutableEvent as e:
            logger.warning("Event %s (%s) not applied: %s", event_id, event_type, e.message)
            return IngestResult(IngestOutcome.UNROUTABLE, event_id, event_type)

        return self._apply(event_id, event_type, payment, now)

    # ------------------------------------------------------------
    # Event parsing
    # ------------------------------------------------------------
    def _from_checkout(self, checkout: Dict[str, Any], now: datetime) -> _Payment:
        metadata = checkout.get("metadata") or {}
        tenant_key = str(metadata.get("tenant_key") or "").strip()
        if not tenant_key:
            raise UnroutableEvent("checkout.session.completed missing tenant_key metadata")

        raw_plan_key = str(metadata.get("plan_key") or "").strip()
        return _Payment(
            tenant_key=tenant_key,
            paid_at=now,
            plan_key=parse_plan_key(raw_plan_key),
            raw_plan_key=raw_plan_key,
            stripe_customer_id=_ref(checkout.get("customer")),
            stripe_subscription_id=_ref(checkout.get("subscription")),
            amount=_minor_to_major(checkout.get("amount_total")),
            currency=checkout.get("currency"),
        )

    def _from_invoice(self, invoice: Dict[str, Any], now: datetime) -> _Payment:
        subscription_id = _ref(invoice.get("subscription"))
        if not subscription_id:
            details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
            subscription_id = _ref(details.get("subscription"))

        record = self.store.find_by_subscription_ref(subscription_id) if subscription_id else None
        if record is None:
            raise UnroutableEvent(f"no subscription record for {subscription_id or 'missing subscription'}")

        transitions = invoice.get("status_transitions") or {}
        paid_at = from_unix(transitions.get("paid_at")) or now

        raw_plan_key = ""
        try:
            raw_plan_key = self.gateway.get_subscription_plan_key(subscription_id)
        except PaymentProcessorError as e:
            logger.warning("Failed to retrieve subscription metadata for %s: %s", subscription_id, e.message)

        return _Payment(
            tenant_key=record.tenant_key,
            paid_at=paid_at,
            plan_key=parse_plan_key(raw_plan_key),
            raw_plan_key=raw_plan_key,
            stripe_customer_id=_ref(invoice.get("customer")),
            stripe_subscription_id=subscription_id,
            amount=_minor_to_major(invoice.get("amount_paid")),
            currency=invoice.get("currency"),
            stripe_invoice_id=invoice.get("id"),
            stripe_payment_intent_id=_ref(invoice.get("payment_intent")),
            period_start=from_unix(invoice.get("period_start")),
            period_end=from_unix(invoice.get("period_end")),
        )

    # ------------------------------------------------------------
    # Ledger gate + extension
    # ------------------------------------------------------------
    def _apply(self, event_id: str, event_type: str, payment: _Payment, now: datetime) -> IngestResult:
        needs_review = payment.plan_key is None
        if needs_review:
            logger.warning(
                "Unknown plan %r for event %s (tenant %s); applying 30-day fallback, flagged for review",
                payment.raw_plan_key, event_id, payment.tenant_key,
            )

        new_valid_until = plan_duration_from(payment.paid_at, payment.plan_key)

        try:
            inserted = self.ledger.try_record_event(
                event_id,
                payment.tenant_key,
                commit=False,
                event_type=event_type,
                stripe_invoice_id=payment.stripe_invoice_id,
                stripe_payment_intent_id=payment.stripe_payment_intent_id,
                stripe_customer_id=payment.stripe_customer_id,
                stripe_subscription_id=payment.stripe_subscription_id,
                amount=payment.amount,
                currency=payment.currency,
                paid_at=payment.paid_at,
                plan_key=payment.plan_key.value if payment.plan_key else None,
                period_start=payment.period_start,
                period_end=payment.period_end,
                needs_review=needs_review,
            )
            if not inserted.inserted:
                return IngestResult(IngestOutcome.DUPLICATE, event_id, event_type, tenant_key=payment.tenant_key)

            record = self.store.extend_validity(
                payment.tenant_key,
                new_valid_until,
                payment.plan_key,
                payment.stripe_customer_id,
                payment.stripe_subscription_id,
                now=now,
                commit=False,
            )
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if self.ledger.exists(event_id):
                logger.info("Event %s committed by a concurrent delivery", event_id)
                return IngestResult(IngestOutcome.DUPLICATE, event_id, event_type, tenant_key=payment.tenant_key)
            logger.error("Conflict applying event %s: %s", event_id, e)
            raise StoreUnavailable() from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Store failure applying event %s", event_id)
            raise StoreUnavailable() from e

        logger.info("Applied event %s to tenant %s", event_id, payment.tenant_key)
        return IngestResult(
            IngestOutcome.PROCESSED,
            event_id,
            event_type,
            tenant_key=payment.tenant_key,
            valid_until=record.valid_until,
            needs_review=needs_review,
        )
