from .subscription_schema import (
    SubscriptionRead, CancellationRead,
    CheckoutRequest, RedirectRead,
    PaymentRead, WebhookAck,
)
from .user_schema import UserCreate, UserLogin, UserRead, TokenRead

__all__ = [
    # Subscription
    "SubscriptionRead", "CancellationRead",
    "CheckoutRequest", "RedirectRead",
    "PaymentRead", "WebhookAck",

    # User
    "UserCreate", "UserLogin", "UserRead", "TokenRead",
]
