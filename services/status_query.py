# services/status_query.py
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from core.exceptions import AuthenticationError, TenantNotLinked
from models.models import SubscriptionRecord, User
from services.subscription_store import SubscriptionRecordStore


class StatusQueryService:
    """Read path for the signed-in user's tenant; bootstraps the trial on first contact."""

    def __init__(self, session: Session, store: Optional[SubscriptionRecordStore] = None):
        self.store = store or SubscriptionRecordStore(session)

    def get_status(self, caller: Optional[User], now: Optional[datetime] = None) -> SubscriptionRecord:
        if caller is None:
            raise AuthenticationError()

        tenant_key = (caller.tenant_key or "").strip()
        if not tenant_key:
            raise TenantNotLinked()

        return self.store.get_or_init_trial(tenant_key, now=now)
