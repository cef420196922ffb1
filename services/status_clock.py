# ================================================================
# services/status_clock.py: Subscription status derivation
# ================================================================
"""
Pure mapping from ``valid_until`` and the current instant to a status.

The stored ``status`` column is only ever a cache of this function; every read
and write path calls it again instead of trusting the stored value.
"""
from datetime import datetime, timedelta

from models.models import SubscriptionStatus, as_utc

EXPIRING_SOON_DAYS = 10
BLOCK_AFTER_OVERDUE_DAYS = 15

_ONE_DAY = timedelta(days=1)


def derive_status(valid_until: datetime, now: datetime) -> SubscriptionStatus:
    delta_days = (as_utc(valid_until) - as_utc(now)) / _ONE_DAY

    if delta_days >= 0:
        if delta_days <= EXPIRING_SOON_DAYS:
            return SubscriptionStatus.EXPIRING_SOON
        return SubscriptionStatus.ACTIVE

    overdue_days = -delta_days
    if overdue_days > BLOCK_AFTER_OVERDUE_DAYS:
        return SubscriptionStatus.BLOCKED
    return SubscriptionStatus.OVERDUE


def is_blocked(status: str | SubscriptionStatus | None) -> bool:
    """True when the consumer should render the full-page block screen."""
    return status == SubscriptionStatus.BLOCKED


def shows_banner(status: str | SubscriptionStatus | None) -> bool:
    """True when the consumer should render the non-blocking payment banner."""
    return status in (SubscriptionStatus.OVERDUE, SubscriptionStatus.BLOCKED)
