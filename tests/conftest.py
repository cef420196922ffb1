"""
Pytest configuration and fixtures
"""
import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest

# Set test environment variables before importing the app
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-tests-only-min-32-chars"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

from core.database import get_session
from core.security import create_token_for_user, hash_password
from main import app
from models.models import User, UserRole, SubscriptionRecord, utcnow
from services.stripe_gateway import CancellationReceipt, StripeGateway, get_payment_gateway
from services.status_clock import derive_status

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


# ============================================================
# Stripe test doubles
# ============================================================
class FakeGateway(StripeGateway):
    """Real webhook signature verification; recorded fakes for network calls."""

    def __init__(self):
        super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, tolerance=300)
        self.plan_keys: Dict[str, str] = {}
        self.plan_key_error: Optional[Exception] = None
        self.prices: Dict[str, str] = {}
        self.customers: Dict[str, str] = {}
        self.period_end: Optional[datetime] = datetime(2030, 1, 1, tzinfo=timezone.utc)
        self.calls: list = []

    def get_subscription_plan_key(self, subscription_id: str) -> str:
        self.calls.append(("get_subscription_plan_key", subscription_id))
        if self.plan_key_error:
            raise self.plan_key_error
        return self.plan_keys.get(subscription_id, "")

    def cancel_at_period_end(self, subscription_id: str) -> CancellationReceipt:
        self.calls.append(("cancel_at_period_end", subscription_id))
        return CancellationReceipt(
            subscription_id=subscription_id,
            cancel_at_period_end=True,
            current_period_end=self.period_end,
        )

    def find_price_id(self, lookup_key: str) -> Optional[str]:
        self.calls.append(("find_price_id", lookup_key))
        return self.prices.get(lookup_key)

    def find_customer_id(self, email: str) -> Optional[str]:
        self.calls.append(("find_customer_id", email))
        return self.customers.get(email)

    def create_customer(self, email: str, name: Optional[str] = None) -> str:
        self.calls.append(("create_customer", email))
        self.customers[email] = f"cus_{len(self.customers) + 1}"
        return self.customers[email]

    def create_checkout_session(self, price_id, metadata, success_url, cancel_url,
                                customer_id=None, customer_email=None) -> str:
        self.calls.append(("create_checkout_session", {
            "price_id": price_id,
            "metadata": metadata,
            "customer_id": customer_id,
            "customer_email": customer_email,
            "success_url": success_url,
        }))
        return "https://checkout.stripe.test/c/session_1"

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self.calls.append(("create_portal_session", customer_id))
        return "https://billing.stripe.test/p/session_1"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header using Stripe's v1 HMAC-SHA256 scheme."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def to_unix(value: datetime) -> int:
    return int(value.timestamp())


def checkout_event(
    event_id: str = "evt_checkout_1",
    tenant_key: Optional[str] = "12345678000190",
    plan_key: str = "monthly",
    customer: str = "cus_1",
    subscription: str = "sub_1",
    amount_total: int = 4990,
) -> bytes:
    metadata: Dict[str, Any] = {"plan_key": plan_key}
    if tenant_key is not None:
        metadata["tenant_key"] = tenant_key
    return json.dumps({
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "customer": customer,
            "subscription": subscription,
            "amount_total": amount_total,
            "currency": "brl",
            "metadata": metadata,
        }},
    }).encode("utf-8")


def invoice_event(
    event_id: str = "evt_invoice_1",
    subscription: Optional[str] = "sub_1",
    customer: str = "cus_1",
    paid_at: Optional[datetime] = None,
    amount_paid: int = 4990,
    event_type: str = "invoice.paid",
) -> bytes:
    paid_at = paid_at or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": {
            "id": "in_1",
            "object": "invoice",
            "subscription": subscription,
            "customer": customer,
            "amount_paid": amount_paid,
            "currency": "brl",
            "payment_intent": "pi_1",
            "status_transitions": {"paid_at": to_unix(paid_at)},
            "period_start": to_unix(paid_at),
            "period_end": to_unix(paid_at + timedelta(days=30)),
        }},
    }).encode("utf-8")


# ============================================================
# Database
# ============================================================
@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(engine, gateway):
    def override_get_session():
        with Session(engine) as request_session:
            yield request_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================
# Users / records
# ============================================================
def make_user(session: Session, email: str, role: UserRole, tenant_key: Optional[str] = "12345678000190") -> User:
    user = User(
        full_name=email.split("@")[0].capitalize(),
        email=email,
        password_hash=hash_password("password123"),
        role=role.value,
        tenant_key=tenant_key,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin_user(session):
    return make_user(session, "admin@petshop.com", UserRole.ADMIN)


@pytest.fixture
def member_user(session):
    return make_user(session, "member@petshop.com", UserRole.MEMBER)


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_token_for_user(user)}"}


def make_record(
    session: Session,
    tenant_key: str = "12345678000190",
    valid_until: Optional[datetime] = None,
    status: Optional[str] = None,
    stripe_subscription_id: Optional[str] = "sub_1",
    stripe_customer_id: Optional[str] = "cus_1",
    plan_key: Optional[str] = "monthly",
) -> SubscriptionRecord:
    now = utcnow()
    valid_until = valid_until or now + timedelta(days=20)
    record = SubscriptionRecord(
        tenant_key=tenant_key,
        valid_until=valid_until,
        trial_started_at=now - timedelta(days=40),
        status=status or derive_status(valid_until, now).value,
        current_plan_key=plan_key,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record
