# core/exceptions.py
"""
Domain errors for the subscription core.

Every error carries the HTTP status it maps to and a message that is safe to
return to the caller; ``main.py`` registers a single handler that renders them
as ``{"detail": ...}``, the same shape FastAPI uses for ``HTTPException``.
"""
from fastapi import status


class SubscriptionError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Subscription request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(SubscriptionError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class AuthorizationError(SubscriptionError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Only the tenant administrator can manage the subscription"


class TenantNotLinked(SubscriptionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "User is not linked to a tenant"


class InvalidSignature(SubscriptionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid webhook signature"


class UnroutableEvent(SubscriptionError):
    """Event cannot be mapped to a tenant; acknowledged and ignored."""

    status_code = status.HTTP_200_OK
    default_message = "Event could not be routed to a tenant"


class UnknownPlan(SubscriptionError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid plan"


class NoActiveSubscription(SubscriptionError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "No active subscription found"


class PaymentProcessorError(SubscriptionError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment processor request failed"


class StoreUnavailable(SubscriptionError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Subscription store is temporarily unavailable"


__all__ = [
    "SubscriptionError",
    "AuthenticationError",
    "AuthorizationError",
    "TenantNotLinked",
    "InvalidSignature",
    "UnroutableEvent",
    "UnknownPlan",
    "NoActiveSubscription",
    "PaymentProcessorError",
    "StoreUnavailable",
]
