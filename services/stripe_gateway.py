# ================================================================
# services/stripe_gateway.py: Stripe SDK access (webhooks + API)
# ================================================================
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from core.config import settings
from core.exceptions import InvalidSignature, PaymentProcessorError

logger = logging.getLogger(__name__)


def from_unix(value: Optional[int]) -> Optional[datetime]:
    """Stripe timestamps are unix seconds; stored datetimes are aware UTC."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass
class CancellationReceipt:
    subscription_id: str
    cancel_at_period_end: bool
    current_period_end: Optional[datetime]


class StripeGateway:
    """
    The only module that talks to Stripe.

    Webhook verification is local (HMAC over the raw body); every other method
    is a network call and raises ``PaymentProcessorError`` on failure.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = settings.STRIPE_WEBHOOK_TOLERANCE if tolerance is None else tolerance
        if self.api_key:
            stripe.api_key = self.api_key

    # ------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------
    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify the ``Stripe-Signature`` header and return the event as a plain dict."""
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured")
            raise InvalidSignature("Webhook secret not configured")
        if not sig_header:
            raise InvalidSignature("Missing stripe-signature header")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                raise InvalidSignature("Invalid payload")

        try:
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", e)
            raise InvalidSignature()

        try:
            event = json.loads(payload)
        except ValueError:
            raise InvalidSignature("Invalid payload")
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise InvalidSignature("Invalid payload")
        return event

    # ------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------
    def get_subscription_plan_key(self, subscription_id: str) -> str:
        """Plan key stored in the subscription metadata at checkout, or ''."""
        self._require_api_key()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not retrieve subscription: {e.user_message or e}") from e

        metadata = subscription["metadata"] if "metadata" in subscription else None
        if not metadata or "plan_key" not in metadata:
            return ""
        return str(metadata["plan_key"] or "")

    def cancel_at_period_end(self, subscription_id: str) -> CancellationReceipt:
        self._require_api_key()
        try:
            updated = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not cancel subscription: {e.user_message or e}") from e

        period_end = updated["current_period_end"] if "current_period_end" in updated else None
        if period_end is None and "items" in updated:
            # Newer API versions only report the period on subscription items
            items = updated["items"]["data"]
            if items and "current_period_end" in items[0]:
                period_end = items[0]["current_period_end"]

        return CancellationReceipt(
            subscription_id=updated["id"],
            cancel_at_period_end=bool(updated["cancel_at_period_end"]),
            current_period_end=from_unix(period_end),
        )

    # ------------------------------------------------------------
    # Checkout / portal
    # ------------------------------------------------------------
    def find_price_id(self, lookup_key: str) -> Optional[str]:
        self._require_api_key()
        try:
            prices = stripe.Price.list(lookup_keys=[lookup_key], active=True, limit=1)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not look up price: {e.user_message or e}") from e
        return prices.data[0].id if prices.data else None

    def find_customer_id(self, email: str) -> Optional[str]:
        self._require_api_key()
        try:
            customers = stripe.Customer.list(email=email, limit=1)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not look up customer: {e.user_message or e}") from e
        return customers.data[0].id if customers.data else None

    def create_customer(self, email: str, name: Optional[str] = None) -> str:
        self._require_api_key()
        try:
            customer = stripe.Customer.create(email=email, name=name)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not create customer: {e.user_message or e}") from e
        return customer.id

    def create_checkout_session(
        self,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> str:
        self._require_api_key()
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        try:
            checkout_session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not create checkout session: {e.user_message or e}") from e
        logger.info("Checkout created: %s", checkout_session.id)
        return checkout_session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self._require_api_key()
        try:
            portal = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Could not open billing portal: {e.user_message or e}") from e
        logger.info("Portal created: %s", portal.id)
        return portal.url

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise PaymentProcessorError("STRIPE_SECRET_KEY is not configured")


def get_payment_gateway() -> StripeGateway:
    """FastAPI dependency; overridden in tests."""
    return StripeGateway()
