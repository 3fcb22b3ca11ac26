"""Retry service — periodic relinking sweep and pending-payment expiry.

process_session_retries() is one sweep over the session retry queue:
entries that are unprocessed, below RETRY_MAX_ATTEMPTS and due are retried
oldest-first by session id only (tracking id was already tried at
registration). A miss pushes next_retry_at out linearly:
(retry_count + 1) * RETRY_BACKOFF_MINUTES.

Designed to be called from `flask process-retries` on a cron schedule, or
from RetryScheduler (`flask retry-worker`) which runs it every
RETRY_SWEEP_INTERVAL_SECONDS in-process.
"""

import logging
import threading

from app.errors import LinkError
from app.services.reconciliation import build_reconciliation
from app.utils import utcnow

logger = logging.getLogger(__name__)


def _retry_entry(recon, entry, now, backoff):
    """Retry one queue entry. Returns True when the payment was linked."""
    linked = False
    if entry.session_id:
        result = recon.resolver.resolve_by_session(entry.session_id, now=now)
        if result.found:
            try:
                recon.linker.link(result.payment, entry.tenant_id, result.strategy, now=now)
                linked = True
            except LinkError as e:
                logger.warning(
                    f"[Session Retry] Link refused for entry {entry.id}: {e.reason}"
                )
        else:
            logger.info(
                f"[Session Retry] No payment for session {entry.session_id} yet "
                f"({result.reason})"
            )

    if linked:
        recon.retries.mark_succeeded(entry, now=now)
    else:
        recon.retries.schedule_next(entry, backoff_minutes=backoff, now=now)
    recon.session.commit()
    return linked


def process_session_retries(recon=None, now=None):
    """Run one sweep. Never raises.

    Returns {"processed": successes, "total": entries_seen}
    (plus "error" when the candidate query itself failed).
    """
    recon = recon or build_reconciliation()
    now = now or utcnow()
    max_attempts = recon.config.get("RETRY_MAX_ATTEMPTS", 5)
    backoff = recon.config.get("RETRY_BACKOFF_MINUTES", 10)

    try:
        entries = recon.retries.due_entries(now=now, max_attempts=max_attempts)
    except Exception as e:
        recon.session.rollback()
        logger.error(f"[Session Retry] Could not load retry queue: {e}", exc_info=True)
        return {"processed": 0, "total": 0, "error": str(e)}

    if not entries:
        logger.info("[Session Retry] No pending retries found")
        return {"processed": 0, "total": 0}

    success_count = 0
    for entry in entries:
        entry_id = entry.id
        try:
            logger.info(
                f"[Session Retry] Processing retry for tenant {entry.tenant_id}, "
                f"session {entry.session_id} (attempt {entry.retry_count + 1})"
            )
            if _retry_entry(recon, entry, now, backoff):
                success_count += 1
                logger.info(
                    f"[Session Retry] SUCCESS: linked session {entry.session_id} "
                    f"to tenant {entry.tenant_id}"
                )
        except Exception as e:
            recon.session.rollback()
            logger.error(f"[Session Retry] Error processing retry {entry_id}: {e}", exc_info=True)
            _record_failed_attempt(recon, entry_id, backoff, now)

    logger.info(f"[Session Retry] Processed {success_count}/{len(entries)} retries successfully")
    return {"processed": success_count, "total": len(entries)}


def _record_failed_attempt(recon, entry_id, backoff, now):
    """Count an errored attempt so the entry still moves toward exhaustion."""
    try:
        entry = recon.retries.get(entry_id)
        if entry is not None and not entry.processed:
            recon.retries.schedule_next(entry, backoff_minutes=backoff, now=now)
            recon.session.commit()
    except Exception:
        recon.session.rollback()
        logger.error(f"[Session Retry] Could not reschedule retry {entry_id}", exc_info=True)


def expire_stale_payments(recon=None, now=None):
    """Mark pending payments past their expires_at as expired."""
    recon = recon or build_reconciliation()
    count = recon.payments.expire_stale(now=now)
    recon.session.commit()
    if count:
        logger.info(f"Expired {count} stale pending payment(s)")
    return count


class RetryScheduler:
    """Run the retry sweep on a fixed interval until stopped.

    Each cycle gets its own app context so sessions don't leak between
    sweeps; a failing cycle is logged and the next one runs on schedule.
    """

    def __init__(self, app, interval_seconds=None):
        self.app = app
        if interval_seconds is None:
            interval_seconds = app.config.get("RETRY_SWEEP_INTERVAL_SECONDS", 300)
        self.interval = interval_seconds
        self._stop = threading.Event()

    def run_once(self):
        with self.app.app_context():
            try:
                return process_session_retries()
            except Exception:
                # process_session_retries already guards itself; this covers
                # failures building the reconciliation services.
                logger.exception("[Cron] Session retry job failed")
                return {"processed": 0, "total": 0, "error": "sweep_failed"}

    def run_forever(self, max_cycles=None):
        cycles = 0
        while not self._stop.is_set():
            result = self.run_once()
            logger.info(
                f"[Cron] Session retry job completed: "
                f"{result.get('processed', 0)}/{result.get('total', 0)} processed"
            )
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._stop.wait(self.interval)

    def stop(self):
        self._stop.set()
