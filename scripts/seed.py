# scripts/seed.py

import os
import sys
import argparse
from datetime import timedelta

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.security import hash_password
from models.models import User, UserRole, SubscriptionRecord, PlanKey, utcnow
from services.subscription_store import SubscriptionRecordStore

# ✅ Load environment variables
load_dotenv()

# Demo tenants, one per derived status: (tenant_key, days until valid_until, plan)
DEMO_TENANTS = [
    ("11111111000101", 45, PlanKey.MONTHLY),     # ACTIVE
    ("22222222000102", 5, PlanKey.QUARTERLY),    # EXPIRING_SOON
    ("33333333000103", -7, PlanKey.SEMIANNUAL),  # OVERDUE
    ("44444444000104", -30, None),               # BLOCKED (expired trial)
]


def seed_dev_data(engine) -> int:
    """Seed development database with one admin per demo tenant. Returns rows created."""
    print("🌱 Seeding development data...")
    created = 0
    now = utcnow()

    with Session(engine) as session:
        store = SubscriptionRecordStore(session)

        for index, (tenant_key, days_left, plan_key) in enumerate(DEMO_TENANTS, start=1):
            # -----------------------------
            # 👑 Tenant admin
            # -----------------------------
            email = f"admin{index}@demo.com"
            if not session.exec(select(User).where(User.email == email)).first():
                session.add(
                    User(
                        full_name=f"Demo Admin {index}",
                        email=email,
                        password_hash=hash_password("admin1234"),
                        role=UserRole.ADMIN.value,
                        tenant_key=tenant_key,
                        is_active=True,
                    )
                )
                session.commit()
                created += 1

            # -----------------------------
            # 📅 Subscription row
            # -----------------------------
            existing = session.exec(
                select(SubscriptionRecord).where(SubscriptionRecord.tenant_key == tenant_key)
            ).first()
            if not existing:
                store.extend_validity(
                    tenant_key,
                    now + timedelta(days=days_left),
                    plan_key,
                    stripe_customer_id=None,
                    stripe_subscription_id=None,
                    now=now,
                )
                created += 1

    print(f"✅ Seeded {created} rows")
    print("🌱 Development data seeding complete.")
    return created


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the subscription database with demo tenants.")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before seeding")
    args = parser.parse_args()

    from core.database import engine, create_db_and_tables

    if args.create_tables:
        create_db_and_tables()
    seed_dev_data(engine)
