# ================================================================
# services/subscription_store.py: Per-tenant subscription record
# ================================================================
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from core.config import settings
from core.exceptions import StoreUnavailable
from models.models import PlanKey, SubscriptionRecord, as_utc, utcnow
from services.status_clock import derive_status

logger = logging.getLogger(__name__)


class SubscriptionRecordStore:
    """
    Upsert/read access to ``company_subscription``.

    This is the only writer of ``SubscriptionRecord.status``; every write goes
    through ``_apply_status`` so the stored value matches ``derive_status``.
    """

    def __init__(self, session: Session, trial_days: Optional[int] = None):
        self.session = session
        self.trial_days = settings.TRIAL_DAYS if trial_days is None else trial_days

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------
    def get(self, tenant_key: str) -> Optional[SubscriptionRecord]:
        try:
            return self.session.exec(
                select(SubscriptionRecord).where(SubscriptionRecord.tenant_key == tenant_key)
            ).first()
        except SQLAlchemyError as e:
            self._fail("lookup", tenant_key, e)

    def find_by_subscription_ref(self, stripe_subscription_id: str) -> Optional[SubscriptionRecord]:
        if not stripe_subscription_id:
            return None
        try:
            return self.session.exec(
                select(SubscriptionRecord).where(
                    SubscriptionRecord.stripe_subscription_id == stripe_subscription_id
                )
            ).first()
        except SQLAlchemyError as e:
            self._fail("subscription lookup", stripe_subscription_id, e)

    # ------------------------------------------------------------
    # Trial bootstrap / status recompute
    # ------------------------------------------------------------
    def get_or_init_trial(self, tenant_key: str, now: Optional[datetime] = None) -> SubscriptionRecord:
        now = as_utc(now) if now else utcnow()
        record = self.get(tenant_key)

        if record is None:
            record = self._create_trial(tenant_key, now)
            if record is not None:
                return record
            # Lost the insert race; the winner's row is authoritative
            record = self.get(tenant_key)
            if record is None:
                raise StoreUnavailable()

        computed = derive_status(record.valid_until, now)
        if computed.value != record.status:
            logger.info(
                "Updating status for tenant %s: %s -> %s", tenant_key, record.status, computed.value
            )
            record.status = computed.value
            record.updated_at = now
            self._commit(record, "status update", tenant_key)

        return record

    def _create_trial(self, tenant_key: str, now: datetime) -> Optional[SubscriptionRecord]:
        valid_until = now + timedelta(days=self.trial_days)
        record = SubscriptionRecord(
            tenant_key=tenant_key,
            valid_until=valid_until,
            trial_started_at=now,
            current_plan_key=None,
            status=derive_status(valid_until, now).value,
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.add(record)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("Trial row for tenant %s created concurrently, reading back", tenant_key)
            return None
        except SQLAlchemyError as e:
            self._fail("trial init", tenant_key, e)

        self.session.refresh(record)
        logger.info(
            "Initialized trial for tenant %s, valid until %s (%s)",
            tenant_key, valid_until.isoformat(), record.status,
        )
        return record

    # ------------------------------------------------------------
    # Validity extension (payment events only)
    # ------------------------------------------------------------
    def extend_validity(
        self,
        tenant_key: str,
        new_valid_until: datetime,
        plan_key: Optional[PlanKey],
        stripe_customer_id: Optional[str],
        stripe_subscription_id: Optional[str],
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> SubscriptionRecord:
        """
        Upsert the tenant row with an absolute ``valid_until``.

        With ``commit=False`` the change is only flushed, so the caller can
        commit it together with its ledger row.
        """
        now = as_utc(now) if now else utcnow()
        new_valid_until = as_utc(new_valid_until)
        record = self.get(tenant_key)
        if record is None:
            record = SubscriptionRecord(
                tenant_key=tenant_key,
                valid_until=new_valid_until,
                trial_started_at=now,
                created_at=now,
            )

        record.valid_until = new_valid_until
        record.current_plan_key = plan_key.value if plan_key else None
        if stripe_customer_id:
            record.stripe_customer_id = stripe_customer_id
        if stripe_subscription_id:
            record.stripe_subscription_id = stripe_subscription_id
        record.status = derive_status(new_valid_until, now).value
        record.updated_at = now

        if commit:
            self._commit(record, "extend validity", tenant_key)
        else:
            self.session.add(record)
            self.session.flush()

        logger.info(
            "Tenant %s valid until %s (%s, plan=%s)",
            tenant_key, new_valid_until.isoformat(), record.status, record.current_plan_key,
        )
        return record

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    def _commit(self, record: SubscriptionRecord, action: str, tenant_key: str) -> None:
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as e:
            self._fail(action, tenant_key, e)

    def _fail(self, action: str, key: str, error: Exception):
        self.session.rollback()
        logger.error("company_subscription %s failed for %s: %s", action, key, error)
        raise StoreUnavailable() from error
