"""
Tests for Stripe event reconciliation
"""
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from core.exceptions import InvalidSignature, PaymentProcessorError, StoreUnavailable
from models.models import PaymentRecord, SubscriptionRecord, SubscriptionStatus
from services.billing_ingestor import BillingEventIngestor, IngestOutcome
from services.subscription_store import SubscriptionRecordStore

from conftest import checkout_event, invoice_event, make_record, sign_payload

TENANT = "12345678000190"
NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def ledger_rows(session: Session):
    return session.exec(select(PaymentRecord)).all()


def subscription_rows(session: Session):
    return session.exec(select(SubscriptionRecord)).all()


@pytest.fixture
def ingestor(session, gateway):
    return BillingEventIngestor(session, gateway)


def deliver(ingestor, payload: bytes, now: datetime = NOW):
    return ingestor.ingest(payload, sign_payload(payload), now=now)


class TestSignature:

    def test_bad_signature_is_rejected_without_state_change(self, ingestor, session):
        payload = checkout_event()

        with pytest.raises(InvalidSignature):
            ingestor.ingest(payload, sign_payload(payload, secret="whsec_wrong"), now=NOW)

        assert ledger_rows(session) == []
        assert subscription_rows(session) == []

    def test_missing_header_is_rejected(self, ingestor, session):
        with pytest.raises(InvalidSignature):
            ingestor.ingest(checkout_event(), None, now=NOW)
        assert ledger_rows(session) == []

    def test_tampered_body_is_rejected(self, ingestor, session):
        payload = checkout_event()
        header = sign_payload(payload)
        tampered = payload.replace(b"monthly", b"annual")

        with pytest.raises(InvalidSignature):
            ingestor.ingest(tampered, header, now=NOW)
        assert subscription_rows(session) == []

    def test_stale_timestamp_is_rejected(self, ingestor):
        payload = checkout_event()
        header = sign_payload(payload, timestamp=1_000_000)

        with pytest.raises(InvalidSignature):
            ingestor.ingest(payload, header, now=NOW)


class TestCheckoutCompleted:

    def test_first_checkout_creates_record_and_ledger_row(self, ingestor, session):
        result = deliver(ingestor, checkout_event(plan_key="monthly", amount_total=4990))

        assert result.outcome == IngestOutcome.PROCESSED
        assert result.tenant_key == TENANT

        record = subscription_rows(session)[0]
        assert record.valid_until == NOW + timedelta(days=30)
        assert record.current_plan_key == "monthly"
        assert record.stripe_customer_id == "cus_1"
        assert record.stripe_subscription_id == "sub_1"
        assert record.status == SubscriptionStatus.ACTIVE.value

        row = ledger_rows(session)[0]
        assert row.stripe_event_id == "evt_checkout_1"
        assert row.amount == 49.9
        assert row.currency == "brl"
        assert row.paid_at == NOW
        assert row.plan_key == "monthly"
        assert row.needs_review is False

    def test_checkout_over_existing_trial_keeps_trial_start(self, ingestor, session):
        trial = SubscriptionRecordStore(session).get_or_init_trial(TENANT, now=NOW - timedelta(days=3))
        trial_started_at = trial.trial_started_at

        deliver(ingestor, checkout_event(plan_key="annual"))

        session.expire_all()
        record = subscription_rows(session)[0]
        assert len(subscription_rows(session)) == 1
        assert record.trial_started_at == trial_started_at
        assert record.valid_until == datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def test_duplicate_delivery_extends_only_once(self, ingestor, session):
        payload = checkout_event()
        first = deliver(ingestor, payload)
        session.expire_all()
        valid_until_after_first = subscription_rows(session)[0].valid_until

        second = deliver(ingestor, payload, now=NOW + timedelta(days=2))

        session.expire_all()
        assert first.outcome == IngestOutcome.PROCESSED
        assert second.outcome == IngestOutcome.DUPLICATE
        assert len(ledger_rows(session)) == 1
        assert subscription_rows(session)[0].valid_until == valid_until_after_first

    def test_missing_tenant_metadata_is_acknowledged_and_ignored(self, ingestor, session):
        result = deliver(ingestor, checkout_event(tenant_key=None))

        assert result.outcome == IngestOutcome.UNROUTABLE
        assert ledger_rows(session) == []
        assert subscription_rows(session) == []

    def test_unknown_plan_gets_fallback_and_is_flagged(self, ingestor, session):
        result = deliver(ingestor, checkout_event(plan_key="weekly"))

        assert result.outcome == IngestOutcome.PROCESSED
        assert result.needs_review is True
        record = subscription_rows(session)[0]
        assert record.valid_until == NOW + timedelta(days=30)
        assert record.current_plan_key is None
        assert ledger_rows(session)[0].needs_review is True


class TestInvoicePaid:

    def test_renewal_is_routed_by_subscription_ref(self, ingestor, session, gateway):
        make_record(session, valid_until=NOW + timedelta(days=2), stripe_subscription_id="sub_1")
        gateway.plan_keys["sub_1"] = "quarterly"
        paid_at = datetime(2024, 1, 14, 8, 0, 0, tzinfo=timezone.utc)

        result = deliver(ingestor, invoice_event(paid_at=paid_at))

        assert result.outcome == IngestOutcome.PROCESSED
        session.expire_all()
        record = subscription_rows(session)[0]
        assert record.valid_until == paid_at + timedelta(days=93)
        assert record.current_plan_key == "quarterly"
        assert record.status == SubscriptionStatus.ACTIVE.value

        row = ledger_rows(session)[0]
        assert row.stripe_invoice_id == "in_1"
        assert row.stripe_payment_intent_id == "pi_1"
        assert row.paid_at == paid_at
        assert row.period_start == paid_at
        assert row.period_end == paid_at + timedelta(days=30)
        assert row.event_type == "invoice.paid"

    def test_legacy_payment_succeeded_event_is_handled(self, ingestor, session, gateway):
        make_record(session)
        gateway.plan_keys["sub_1"] = "monthly"

        result = deliver(ingestor, invoice_event(event_type="invoice.payment_succeeded"))
        assert result.outcome == IngestOutcome.PROCESSED

    def test_subscription_ref_from_parent_details(self, ingestor, session, gateway):
        make_record(session, stripe_subscription_id="sub_new_api")
        gateway.plan_keys["sub_new_api"] = "monthly"
        event = json.loads(invoice_event(subscription=None))
        event["data"]["object"]["parent"] = {
            "type": "subscription_details",
            "subscription_details": {"subscription": "sub_new_api"},
        }
        payload = json.dumps(event).encode("utf-8")

        result = deliver(ingestor, payload)

        assert result.outcome == IngestOutcome.PROCESSED
        assert result.tenant_key == TENANT

    def test_unmapped_subscription_is_acknowledged_and_ignored(self, ingestor, session, gateway):
        make_record(session, stripe_subscription_id="sub_other")
        before = subscription_rows(session)[0].valid_until

        result = deliver(ingestor, invoice_event(subscription="sub_unknown"))

        assert result.outcome == IngestOutcome.UNROUTABLE
        assert ledger_rows(session) == []
        session.expire_all()
        assert subscription_rows(session)[0].valid_until == before
        assert gateway.calls == []

    def test_missing_plan_metadata_falls_back_to_thirty_days(self, ingestor, session, gateway):
        make_record(session, plan_key="annual")
        paid_at = datetime(2024, 1, 14, tzinfo=timezone.utc)

        result = deliver(ingestor, invoice_event(paid_at=paid_at))

        assert result.needs_review is True
        session.expire_all()
        record = subscription_rows(session)[0]
        assert record.valid_until == paid_at + timedelta(days=30)
        assert record.current_plan_key is None
        assert ledger_rows(session)[0].needs_review is True

    def test_metadata_lookup_failure_is_treated_as_unknown_plan(self, ingestor, session, gateway):
        make_record(session)
        gateway.plan_key_error = PaymentProcessorError("stripe down")

        result = deliver(ingestor, invoice_event())

        assert result.outcome == IngestOutcome.PROCESSED
        assert result.needs_review is True

    def test_early_renewal_drops_the_unused_remainder(self, ingestor, session, gateway):
        # valid_until is anchored on paid_at, not on the previous valid_until
        make_record(session, valid_until=NOW + timedelta(days=20))
        gateway.plan_keys["sub_1"] = "monthly"

        deliver(ingestor, invoice_event(paid_at=NOW))

        session.expire_all()
        assert subscription_rows(session)[0].valid_until == NOW + timedelta(days=30)

    def test_out_of_order_events_last_write_wins(self, ingestor, session, gateway):
        make_record(session)
        gateway.plan_keys["sub_1"] = "monthly"
        later = datetime(2024, 2, 14, tzinfo=timezone.utc)
        earlier = datetime(2024, 1, 15, tzinfo=timezone.utc)

        deliver(ingestor, invoice_event(event_id="evt_later", paid_at=later))
        deliver(ingestor, invoice_event(event_id="evt_earlier", paid_at=earlier))

        session.expire_all()
        assert subscription_rows(session)[0].valid_until == earlier + timedelta(days=30)
        assert len(ledger_rows(session)) == 2


class TestOtherEventsAndFailures:

    def test_unhandled_event_type_is_ignored(self, ingestor, session):
        payload = json.dumps({
            "id": "evt_other",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1"}},
        }).encode("utf-8")

        result = deliver(ingestor, payload)

        assert result.outcome == IngestOutcome.IGNORED
        assert ledger_rows(session) == []

    def test_same_event_committed_concurrently_is_a_duplicate(self, ingestor, session, engine, monkeypatch):
        real_commit = session.commit
        commits = []

        def commit_after_other_delivery():
            commits.append(True)
            if len(commits) > 1:
                return real_commit()
            # The other delivery of this event wins the commit
            session.rollback()
            with Session(engine) as other:
                other.add(PaymentRecord(stripe_event_id="evt_checkout_1", tenant_key=TENANT, paid_at=NOW))
                other.commit()
            raise IntegrityError(
                "INSERT INTO subscription_payment", {}, Exception("UNIQUE constraint failed"),
            )

        monkeypatch.setattr(session, "commit", commit_after_other_delivery)

        result = deliver(ingestor, checkout_event())

        assert result.outcome == IngestOutcome.DUPLICATE
        session.expire_all()
        assert len(ledger_rows(session)) == 1
        assert subscription_rows(session) == []

    def test_distinct_events_racing_to_create_the_record(self, ingestor, session, engine, monkeypatch):
        # Another checkout for the same tenant created the record after our lookup
        with Session(engine) as other:
            other.add(PaymentRecord(stripe_event_id="evt_checkout_0", tenant_key=TENANT, paid_at=NOW))
            other.add(SubscriptionRecord(
                tenant_key=TENANT,
                valid_until=NOW + timedelta(days=30),
                trial_started_at=NOW,
                status=SubscriptionStatus.ACTIVE.value,
            ))
            other.commit()
        monkeypatch.setattr(ingestor.store, "get", lambda tenant_key: None)
        payload = checkout_event(event_id="evt_checkout_2", plan_key="annual")

        with pytest.raises(StoreUnavailable):
            deliver(ingestor, payload)

        assert [row.stripe_event_id for row in ledger_rows(session)] == ["evt_checkout_0"]

        # Stripe retries the rejected delivery
        monkeypatch.undo()
        result = deliver(ingestor, payload)

        session.expire_all()
        assert result.outcome == IngestOutcome.PROCESSED
        assert len(ledger_rows(session)) == 2
        assert len(subscription_rows(session)) == 1
        assert subscription_rows(session)[0].valid_until == datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def test_store_failure_during_extension_rolls_back_ledger_row(self, ingestor, session, monkeypatch):
        def broken_extend(*args, **kwargs):
            raise OperationalError("UPDATE company_subscription", {}, Exception("database is down"))

        monkeypatch.setattr(ingestor.store, "extend_validity", broken_extend)
        payload = checkout_event()

        with pytest.raises(StoreUnavailable):
            deliver(ingestor, payload)

        assert ledger_rows(session) == []
        assert subscription_rows(session) == []

        # The retried delivery is applied once the store recovers
        monkeypatch.undo()
        result = deliver(ingestor, payload)
        assert result.outcome == IngestOutcome.PROCESSED
        assert len(ledger_rows(session)) == 1
