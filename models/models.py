# models/models.py
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    """Aware UTC timestamp, the representation stored in every datetime column."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize to aware UTC; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRING_SOON = "EXPIRING_SOON"
    OVERDUE = "OVERDUE"
    BLOCKED = "BLOCKED"


class PlanKey(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(max_length=100)
    email: str = Field(index=True, unique=True, max_length=100, nullable=False)
    password_hash: str = Field(nullable=False)

    role: str = Field(default=UserRole.MEMBER.value, max_length=20, index=True)
    # Company registration number (CNPJ); partition key of every billing table
    tenant_key: Optional[str] = Field(default=None, max_length=32, index=True)

    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)

    def is_tenant_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value and bool(self.tenant_key)


# ============================================================
# SUBSCRIPTION RECORD (one per tenant)
# ============================================================
class SubscriptionRecord(SQLModel, table=True):
    __tablename__ = "company_subscription"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_key: str = Field(unique=True, index=True, max_length=32, nullable=False)

    # Derived from valid_until on every write, see services.status_clock
    status: str = Field(default=SubscriptionStatus.ACTIVE.value, max_length=20)
    valid_until: datetime = Field(nullable=False)
    trial_started_at: datetime = Field(default_factory=utcnow, nullable=False)
    current_plan_key: Optional[str] = Field(default=None, max_length=20)

    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# PAYMENT LEDGER (append-only)
# ============================================================
class PaymentRecord(SQLModel, table=True):
    __tablename__ = "subscription_payment"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_key: str = Field(index=True, max_length=32, nullable=False)

    # Idempotency key
    stripe_event_id: str = Field(unique=True, index=True, max_length=255, nullable=False)
    event_type: Optional[str] = Field(default=None, max_length=100)

    stripe_invoice_id: Optional[str] = Field(default=None, max_length=255)
    stripe_payment_intent_id: Optional[str] = Field(default=None, max_length=255)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

    amount: Optional[float] = None
    currency: Optional[str] = Field(default=None, max_length=3)
    paid_at: datetime = Field(nullable=False)
    plan_key: Optional[str] = Field(default=None, max_length=20)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    # Set when the plan could not be resolved and the 30-day fallback was used
    needs_review: bool = Field(default=False, index=True)

    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "User",
    "SubscriptionRecord",
    "PaymentRecord",
    "UserRole",
    "SubscriptionStatus",
    "PlanKey",
    "as_utc",
    "utcnow",
]
