# ================================================================
# services/checkout.py: Stripe hosted checkout and customer portal
# ================================================================
import logging
from typing import Optional

from sqlmodel import Session

from core.config import settings
from core.exceptions import AuthorizationError, PaymentProcessorError, TenantNotLinked, UnknownPlan
from models.models import User
from services.billing_plans import parse_plan_key, price_lookup_key
from services.stripe_gateway import StripeGateway
from services.subscription_store import SubscriptionRecordStore

logger = logging.getLogger(__name__)


def _require_admin(caller: User) -> None:
    if not caller.tenant_key:
        raise TenantNotLinked()
    if not caller.is_tenant_admin():
        raise AuthorizationError()


class CheckoutService:
    def __init__(self, session: Session, gateway: StripeGateway, store: Optional[SubscriptionRecordStore] = None):
        self.gateway = gateway
        self.store = store or SubscriptionRecordStore(session)

    def create_checkout(self, caller: User, plan_key: str, origin: Optional[str] = None) -> str:
        """
        Return the hosted checkout URL for ``plan_key``.

        Both the session and the subscription carry ``tenant_key`` and
        ``plan_key`` metadata; the webhook routes and prices renewals with it.
        """
        _require_admin(caller)

        plan = parse_plan_key(plan_key)
        if plan is None:
            raise UnknownPlan(f"Invalid plan '{plan_key}'")

        lookup_key = price_lookup_key(plan)
        logger.info("Looking up price by lookup_key %s", lookup_key)
        price_id = self.gateway.find_price_id(lookup_key)
        if not price_id:
            raise PaymentProcessorError(
                f"No Stripe price configured for plan '{plan.value}'. "
                f"Create a Price with lookup_key='{lookup_key}'."
            )

        record = self.store.get(caller.tenant_key)
        customer_id = record.stripe_customer_id if record else None
        if not customer_id:
            customer_id = self.gateway.find_customer_id(caller.email)

        return self.gateway.create_checkout_session(
            price_id=price_id,
            metadata={"plan_key": plan.value, "tenant_key": caller.tenant_key},
            success_url=settings.checkout_success_url(origin),
            cancel_url=settings.checkout_cancel_url(origin),
            customer_id=customer_id,
            customer_email=None if customer_id else caller.email,
        )

    def create_portal(self, caller: User, origin: Optional[str] = None) -> str:
        _require_admin(caller)

        record = self.store.get(caller.tenant_key)
        customer_id = record.stripe_customer_id if record else None
        if not customer_id:
            customer_id = self.gateway.find_customer_id(caller.email)
        if not customer_id:
            logger.info("Customer not found for %s, creating", caller.tenant_key)
            customer_id = self.gateway.create_customer(caller.email, name=caller.full_name)

        return self.gateway.create_portal_session(customer_id, settings.portal_return_url(origin))
