# services/cancellation.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from core.exceptions import AuthorizationError, NoActiveSubscription, TenantNotLinked
from models.models import User
from services.stripe_gateway import StripeGateway
from services.subscription_store import SubscriptionRecordStore

logger = logging.getLogger(__name__)


@dataclass
class CancellationResult:
    scheduled: bool
    period_end: Optional[datetime]
    subscription_id: str


class CancellationRequester:
    """
    Stops auto-renewal at the end of the paid period.

    The local record is left untouched: once renewals stop arriving the
    derived status walks down to BLOCKED on its own.
    """

    def __init__(self, session: Session, gateway: StripeGateway, store: Optional[SubscriptionRecordStore] = None):
        self.gateway = gateway
        self.store = store or SubscriptionRecordStore(session)

    def request_cancel_at_period_end(self, caller: User) -> CancellationResult:
        if not caller.is_tenant_admin():
            if not caller.tenant_key:
                raise TenantNotLinked()
            raise AuthorizationError()

        record = self.store.get(caller.tenant_key)
        if record is None or not record.stripe_subscription_id:
            raise NoActiveSubscription("No Stripe subscription found for this tenant")

        receipt = self.gateway.cancel_at_period_end(record.stripe_subscription_id)
        logger.info(
            "Tenant %s subscription %s set to cancel at period end (%s)",
            caller.tenant_key, receipt.subscription_id, receipt.current_period_end,
        )
        return CancellationResult(
            scheduled=receipt.cancel_at_period_end,
            period_end=receipt.current_period_end,
            subscription_id=receipt.subscription_id,
        )
