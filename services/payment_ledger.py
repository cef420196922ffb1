# services/payment_ledger.py
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from core.exceptions import StoreUnavailable
from models.models import PaymentRecord

logger = logging.getLogger(__name__)


@dataclass
class LedgerInsert:
    inserted: bool
    record: Optional[PaymentRecord] = None


class PaymentLedger:
    """Append-only payment history keyed by the Stripe event id."""

    def __init__(self, session: Session):
        self.session = session

    def exists(self, stripe_event_id: str) -> bool:
        try:
            return self.session.exec(
                select(PaymentRecord.id).where(PaymentRecord.stripe_event_id == stripe_event_id)
            ).first() is not None
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("subscription_payment lookup failed for %s: %s", stripe_event_id, e)
            raise StoreUnavailable() from e

    def try_record_event(
        self,
        stripe_event_id: str,
        tenant_key: str,
        commit: bool = True,
        **fields,
    ) -> LedgerInsert:
        """
        Insert the ledger row unless the event id was already recorded.

        A duplicate id is reported as ``inserted=False``, never as an error.
        """
        if self.exists(stripe_event_id):
            logger.info("Event %s already recorded, skipping", stripe_event_id)
            return LedgerInsert(inserted=False)

        record = PaymentRecord(stripe_event_id=stripe_event_id, tenant_key=tenant_key, **fields)
        try:
            self.session.add(record)
            if commit:
                self.session.commit()
                self.session.refresh(record)
            else:
                self.session.flush()
        except IntegrityError:
            # Same event delivered concurrently; the other delivery owns it
            self.session.rollback()
            logger.info("Event %s recorded concurrently, skipping", stripe_event_id)
            return LedgerInsert(inserted=False)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("subscription_payment insert failed for %s: %s", stripe_event_id, e)
            raise StoreUnavailable() from e

        return LedgerInsert(inserted=True, record=record)

    def history(self, tenant_key: str, limit: int = 50) -> List[PaymentRecord]:
        try:
            return list(
                self.session.exec(
                    select(PaymentRecord)
                    .where(PaymentRecord.tenant_key == tenant_key)
                    .order_by(PaymentRecord.paid_at.desc(), PaymentRecord.id.desc())
                    .limit(limit)
                ).all()
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("subscription_payment history failed for %s: %s", tenant_key, e)
            raise StoreUnavailable() from e
