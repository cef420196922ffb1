# services/billing_plans.py
from datetime import datetime, timedelta
from typing import Optional

from core.config import settings
from models.models import PlanKey

FALLBACK_DURATION_DAYS = 30

PLAN_DURATION_DAYS = {
    PlanKey.MONTHLY: 30,
    PlanKey.QUARTERLY: 93,
    PlanKey.SEMIANNUAL: 186,
}


def parse_plan_key(value: Optional[str]) -> Optional[PlanKey]:
    """Map a raw metadata value to a PlanKey, or None when it is empty or unknown."""
    if not value:
        return None
    try:
        return PlanKey(str(value).strip().lower())
    except ValueError:
        return None


def add_one_calendar_year(value: datetime) -> datetime:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # 29 Feb rolls over to 1 Mar in a non-leap year
        return value.replace(year=value.year + 1, month=3, day=1)


def plan_duration_from(paid_at: datetime, plan_key: Optional[PlanKey]) -> datetime:
    """
    Compute the new ``valid_until`` for a payment made at ``paid_at``.

    The result is anchored on the payment instant, not on the previous
    ``valid_until``. Unknown plans get the conservative 30-day extension.
    """
    if plan_key == PlanKey.ANNUAL:
        return add_one_calendar_year(paid_at)
    days = PLAN_DURATION_DAYS.get(plan_key, FALLBACK_DURATION_DAYS)
    return paid_at + timedelta(days=days)


def price_lookup_key(plan_key: PlanKey) -> str:
    """Stripe Price ``lookup_key`` that must exist for each purchasable plan."""
    return f"{settings.STRIPE_PRICE_LOOKUP_PREFIX}_{plan_key.value}"
