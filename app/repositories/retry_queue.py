"""Retry queue store — deferred session relink requests."""

from datetime import timedelta

from app.models.retry_queue import RetryQueueEntry
from app.repositories.base import BaseStore
from app.utils import utcnow


class RetryQueueStore(BaseStore):
    model = RetryQueueEntry

    def enqueue(self, tenant_id, session_id=None, tracking_id=None,
                admin_email=None, delay_minutes=5, now=None):
        now = now or utcnow()
        entry = RetryQueueEntry(
            tenant_id=tenant_id,
            session_id=session_id,
            tracking_id=tracking_id,
            admin_email=admin_email.lower().strip() if admin_email else None,
            retry_count=0,
            next_retry_at=now + timedelta(minutes=delay_minutes),
            processed=False,
            created_at=now,
        )
        return self.add(entry)

    def due_entries(self, now=None, max_attempts=RetryQueueEntry.MAX_ATTEMPTS):
        """Unprocessed, not exhausted, due now — oldest first."""
        now = now or utcnow()
        return (
            self.query()
            .filter(RetryQueueEntry.processed.is_(False))
            .filter(RetryQueueEntry.retry_count < max_attempts)
            .filter(RetryQueueEntry.next_retry_at <= now)
            .order_by(RetryQueueEntry.created_at.asc())
            .all()
        )

    def mark_succeeded(self, entry, now=None):
        now = now or utcnow()
        entry.processed = True
        entry.success = True
        entry.processed_at = now
        entry.last_attempt_at = now
        self.session.flush()
        return entry

    def schedule_next(self, entry, backoff_minutes=10, now=None):
        """Linear backoff: next try at (retry_count + 1) * backoff from now."""
        now = now or utcnow()
        entry.next_retry_at = now + timedelta(
            minutes=(entry.retry_count + 1) * backoff_minutes
        )
        entry.retry_count = entry.retry_count + 1
        entry.last_attempt_at = now
        self.session.flush()
        return entry
