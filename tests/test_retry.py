"""Tests for the session retry queue and sweep.

Covers:
- Enqueue delay (first attempt RETRY_INITIAL_DELAY_MINUTES out)
- Entries are skipped until due, then linked once the payment exists
- Linear backoff on a miss, entries abandoned after RETRY_MAX_ATTEMPTS
- A failing entry doesn't stop the rest of the sweep
- Pending payment expiry
- RetryScheduler cycles
"""

from datetime import timedelta
from unittest.mock import patch

from app.extensions import db
from app.models.pending_payment import PendingPayment
from app.models.retry_queue import RetryQueueEntry
from app.models.tenant import Tenant
from app.services.reconciliation import queue_session_retry
from app.services.retry_service import (
    RetryScheduler,
    expire_stale_payments,
    process_session_retries,
)
from app.utils import as_utc, utcnow


class TestEnqueue:

    def test_first_attempt_after_initial_delay(self, recon, seed_data):
        now = utcnow()
        entry = queue_session_retry(
            seed_data["tenant_id"], session_id="cs_late", admin_email="Bestuur@AlFath.nl",
            recon=recon, now=now,
        )

        assert entry.retry_count == 0
        assert entry.processed is False
        assert entry.admin_email == "bestuur@alfath.nl"
        assert as_utc(entry.next_retry_at) == now + timedelta(minutes=5)


class TestSweep:

    def test_not_due_entry_is_skipped(self, recon, seed_data):
        now = utcnow()
        queue_session_retry(seed_data["tenant_id"], session_id="cs_late", recon=recon, now=now)

        result = process_session_retries(recon=recon, now=now + timedelta(minutes=4))
        assert result == {"processed": 0, "total": 0}

    def test_due_entry_links_when_payment_arrived(self, recon, seed_data, make_payment):
        now = utcnow()
        entry = queue_session_retry(
            seed_data["tenant_id"], session_id="cs_late", recon=recon, now=now,
        )
        entry_id = entry.id
        make_payment(stripe_session_id="cs_late", minutes_ago=1)

        result = process_session_retries(recon=recon, now=now + timedelta(minutes=6))

        assert result == {"processed": 1, "total": 1}
        entry = db.session.get(RetryQueueEntry, entry_id)
        assert entry.processed is True
        assert entry.success is True
        tenant = db.session.get(Tenant, seed_data["tenant_id"])
        assert tenant.subscription_status == Tenant.ACTIVE
        payment = PendingPayment.query.filter_by(stripe_session_id="cs_late").one()
        assert payment.linking_method == "session_id"

    def test_miss_backs_off_linearly(self, recon, seed_data):
        now = utcnow()
        entry = queue_session_retry(
            seed_data["tenant_id"], session_id="cs_never", recon=recon, now=now,
        )
        entry_id = entry.id

        first = now + timedelta(minutes=5)
        process_session_retries(recon=recon, now=first)
        entry = db.session.get(RetryQueueEntry, entry_id)
        assert entry.retry_count == 1
        assert as_utc(entry.next_retry_at) == first + timedelta(minutes=10)

        second = first + timedelta(minutes=10)
        process_session_retries(recon=recon, now=second)
        entry = db.session.get(RetryQueueEntry, entry_id)
        assert entry.retry_count == 2
        assert as_utc(entry.next_retry_at) == second + timedelta(minutes=20)
        assert entry.processed is False

    def test_stops_after_max_attempts(self, recon, seed_data):
        now = utcnow()
        entry = queue_session_retry(
            seed_data["tenant_id"], session_id="cs_never", recon=recon, now=now,
        )
        entry_id = entry.id

        later = now
        for _ in range(8):
            later = later + timedelta(hours=2)
            process_session_retries(recon=recon, now=later)

        entry = db.session.get(RetryQueueEntry, entry_id)
        assert entry.retry_count == 5
        assert entry.is_exhausted
        assert entry.processed is False

    def test_one_failing_entry_does_not_stop_sweep(self, recon, seed_data, make_tenant,
                                                   make_payment):
        now = utcnow()
        other = make_tenant()
        first = queue_session_retry(
            seed_data["tenant_id"], session_id="cs_a", recon=recon,
            now=now - timedelta(minutes=1),
        )
        first_id = first.id
        queue_session_retry(other.id, session_id="cs_b", recon=recon, now=now)
        make_payment(stripe_session_id="cs_b", minutes_ago=1)

        real_resolve = recon.resolver.resolve_by_session

        def flaky(session_id, now=None):
            if session_id == "cs_a":
                raise RuntimeError("lookup exploded")
            return real_resolve(session_id, now=now)

        with patch.object(recon.resolver, "resolve_by_session", side_effect=flaky):
            result = process_session_retries(recon=recon, now=now + timedelta(minutes=10))

        assert result == {"processed": 1, "total": 2}
        failed = db.session.get(RetryQueueEntry, first_id)
        assert failed.retry_count == 1
        assert failed.processed is False

    def test_query_failure_returns_error(self, recon):
        with patch.object(recon.retries, "due_entries", side_effect=RuntimeError("db down")):
            result = process_session_retries(recon=recon)
        assert result["processed"] == 0
        assert "db down" in result["error"]


class TestExpireStalePayments:

    def test_only_past_expiry_pending_rows_expire(self, recon, make_payment):
        stale = make_payment(minutes_ago=150)
        fresh = make_payment(minutes_ago=30)
        linked = make_payment(minutes_ago=150, status=PendingPayment.LINKED)

        count = expire_stale_payments(recon=recon)

        assert count == 1
        assert db.session.get(PendingPayment, stale.id).status == PendingPayment.EXPIRED
        assert db.session.get(PendingPayment, fresh.id).status == PendingPayment.PENDING
        assert db.session.get(PendingPayment, linked.id).status == PendingPayment.LINKED


class TestRetryScheduler:

    def test_runs_requested_cycles(self, app):
        scheduler = RetryScheduler(app, interval_seconds=0)
        with patch("app.services.retry_service.process_session_retries",
                   return_value={"processed": 0, "total": 0}) as mock_sweep:
            scheduler.run_forever(max_cycles=3)
        assert mock_sweep.call_count == 3

    def test_failing_cycle_is_contained(self, app):
        scheduler = RetryScheduler(app, interval_seconds=0)
        with patch("app.services.retry_service.process_session_retries",
                   side_effect=RuntimeError("boom")):
            result = scheduler.run_once()
        assert result["error"] == "sweep_failed"

    def test_default_interval_from_config(self, app):
        assert RetryScheduler(app).interval == 300
