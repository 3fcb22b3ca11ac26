"""Pending payment store.

All status changes go through status-guarded UPDATE statements built from
PendingPayment.sources_for(), so a second writer racing on the same row
sees rowcount == 0 instead of silently overwriting.

Methods flush but do NOT commit — the caller commits.
"""

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from app.models.pending_payment import PendingPayment
from app.repositories.base import BaseStore
from app.utils import utcnow

logger = logging.getLogger(__name__)

# Columns a redelivered checkout event may refresh on a still-pending row.
_UPSERT_FIELDS = (
    "stripe_customer_id",
    "stripe_subscription_id",
    "tracking_id",
    "customer_email",
    "plan_type",
    "amount",
    "currency",
    "metadata_",
)


class PendingPaymentStore(BaseStore):
    model = PendingPayment

    def get_by_session_id(self, session_id):
        return self.query().filter_by(stripe_session_id=session_id).first()

    # ── Upsert ──

    def upsert_by_session_id(self, session_id, fields, now=None, ttl_hours=2):
        """Insert or refresh the payment row for a checkout session.

        Returns (payment, created). A row that already left `pending` is
        returned untouched — redelivery never resurrects a linked payment.
        """
        now = now or utcnow()
        payment = self.get_by_session_id(session_id)
        if payment is not None:
            return self._refresh(payment, fields, now), False

        payment = PendingPayment(
            stripe_session_id=session_id,
            status=PendingPayment.PENDING,
            created_at=now,
            updated_at=now,
            expires_at=PendingPayment.default_expiry(now, ttl_hours),
            **{k: v for k, v in fields.items() if k in _UPSERT_FIELDS},
        )
        self.session.add(payment)
        try:
            self.session.flush()
        except IntegrityError:
            # Concurrent delivery inserted the same session first.
            self.session.rollback()
            logger.info(f"Concurrent insert for session {session_id}, refreshing instead")
            payment = self.get_by_session_id(session_id)
            return self._refresh(payment, fields, now), False
        return payment, True

    def _refresh(self, payment, fields, now):
        if payment.status != PendingPayment.PENDING:
            return payment
        for key in _UPSERT_FIELDS:
            value = fields.get(key)
            if value is not None:
                setattr(payment, key, value)
        payment.updated_at = now
        self.session.flush()
        return payment

    # ── Lookups (pending, unexpired only) ──

    def _pending(self, now):
        return self.query().filter(
            PendingPayment.status == PendingPayment.PENDING,
            or_(
                PendingPayment.expires_at.is_(None),
                PendingPayment.expires_at > now,
            ),
        )

    def find_pending_by_tracking_id(self, tracking_id, now=None):
        return (
            self._pending(now or utcnow())
            .filter(PendingPayment.tracking_id == tracking_id)
            .order_by(PendingPayment.created_at.desc())
            .first()
        )

    def find_pending_by_session_id(self, session_id, now=None):
        return (
            self._pending(now or utcnow())
            .filter(PendingPayment.stripe_session_id == session_id)
            .first()
        )

    def find_pending_by_email(self, email, since, now=None):
        """Most recent first."""
        return (
            self._pending(now or utcnow())
            .filter(PendingPayment.customer_email == email.lower().strip())
            .filter(PendingPayment.created_at >= since)
            .order_by(PendingPayment.created_at.desc())
            .all()
        )

    def find_pending_created_since(self, since, now=None):
        return (
            self._pending(now or utcnow())
            .filter(PendingPayment.created_at >= since)
            .order_by(PendingPayment.created_at.desc())
            .all()
        )

    def find_linked_for_subscription(self, tenant_id, subscription_id, exclude_id=None):
        query = self.query().filter(
            PendingPayment.status == PendingPayment.LINKED,
            PendingPayment.tenant_id == tenant_id,
            PendingPayment.stripe_subscription_id == subscription_id,
        )
        if exclude_id:
            query = query.filter(PendingPayment.id != exclude_id)
        return query.first()

    # ── Guarded status transitions ──

    def _guarded_update(self, payment_id, target, values):
        sources = PendingPayment.sources_for(target)
        rowcount = (
            self.query()
            .filter(PendingPayment.id == payment_id)
            .filter(PendingPayment.status.in_(sources))
            .update(dict(values, status=target), synchronize_session="fetch")
        )
        self.session.flush()
        return rowcount == 1

    def mark_linked(self, payment_id, tenant_id, strategy, now=None):
        """pending -> linked. Returns False if the row was no longer pending."""
        now = now or utcnow()
        return self._guarded_update(payment_id, PendingPayment.LINKED, {
            "tenant_id": tenant_id,
            "linking_method": strategy,
            "linked_at": now,
            "updated_at": now,
        })

    def mark_superseded(self, payment_id, now=None):
        return self._guarded_update(payment_id, PendingPayment.SUPERSEDED, {
            "updated_at": now or utcnow(),
        })

    def revert_to_pending(self, payment_id, tenant_id, now=None):
        """Compensating write for a half-finished link: linked -> pending.

        Deliberately outside VALID_TRANSITIONS; only the linker calls this.
        Guarded on the tenant we linked to so we never undo someone else's link.
        """
        rowcount = (
            self.query()
            .filter(
                PendingPayment.id == payment_id,
                PendingPayment.status == PendingPayment.LINKED,
                PendingPayment.tenant_id == tenant_id,
            )
            .update({
                "status": PendingPayment.PENDING,
                "tenant_id": None,
                "linking_method": None,
                "linked_at": None,
                "updated_at": now or utcnow(),
            }, synchronize_session="fetch")
        )
        self.session.flush()
        return rowcount == 1

    def expire_stale(self, now=None):
        """Move every pending payment past its expires_at to expired."""
        now = now or utcnow()
        rowcount = (
            self.query()
            .filter(
                PendingPayment.status.in_(PendingPayment.sources_for(PendingPayment.EXPIRED)),
                PendingPayment.expires_at.isnot(None),
                PendingPayment.expires_at <= now,
            )
            .update({
                "status": PendingPayment.EXPIRED,
                "updated_at": now,
            }, synchronize_session="fetch")
        )
        self.session.flush()
        return rowcount
