"""Pending payment model.

One row per Stripe Checkout Session that has not (yet) been bound to a
tenant. Rows are upserted by stripe_session_id so duplicate webhook
deliveries collapse into a single record. Rows are never deleted —
terminal statuses are kept for audit.

Status lifecycle:
    pending -> linked | expired | superseded   (all three are terminal)

The only way back from linked to pending is the linker's compensating
rollback, which sits outside VALID_TRANSITIONS and is logged.
"""

import uuid
from datetime import timedelta

from app.errors import InvalidTransitionError
from app.extensions import db
from app.utils import as_utc, utcnow


class PendingPayment(db.Model):
    __tablename__ = "pending_payments"

    # -- Statuses --
    PENDING = "pending"
    LINKED = "linked"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"
    STATUSES = [PENDING, LINKED, EXPIRED, SUPERSEDED]

    # -- Valid status transitions (terminal states have no entry) --
    VALID_TRANSITIONS = {
        PENDING: [LINKED, EXPIRED, SUPERSEDED],
    }

    # -- Plan types --
    PLAN_TYPES = ["trial", "basic", "professional", "premium"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1B2...", the upsert key
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)

    tracking_id = db.Column(
        db.String(64), nullable=True, index=True
    )  # issued by us at checkout creation
    customer_email = db.Column(
        db.String(255), nullable=True, index=True
    )  # lower-cased, weak fallback key only

    plan_type = db.Column(db.String(50), nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=True)  # major units
    currency = db.Column(db.String(3), nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # raw checkout metadata, named metadata_ to avoid clash with SQLAlchemy

    status = db.Column(
        db.String(20), nullable=False, default=PENDING, index=True
    )
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id"), nullable=True
    )
    linking_method = db.Column(
        db.String(50), nullable=True
    )  # which correlation strategy matched

    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    linked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # --- Relationships ---
    tenant = db.relationship("Tenant", back_populates="pending_payments")

    @classmethod
    def can_transition(cls, current, target):
        return target in cls.VALID_TRANSITIONS.get(current, [])

    @classmethod
    def check_transition(cls, current, target):
        """Raise InvalidTransitionError unless `current` -> `target` is allowed."""
        if not cls.can_transition(current, target):
            raise InvalidTransitionError(current, target)
        return target

    @classmethod
    def sources_for(cls, target):
        """Statuses from which `target` is reachable.

        Stores use this to build status-guarded UPDATE statements, so the
        transition table stays the single source of truth.
        """
        return [s for s, allowed in cls.VALID_TRANSITIONS.items() if target in allowed]

    def age(self, now=None):
        return (now or utcnow()) - as_utc(self.created_at)

    @staticmethod
    def default_expiry(created_at, ttl_hours=2):
        return created_at + timedelta(hours=ttl_hours)

    def __repr__(self):
        return f"<PendingPayment {self.stripe_session_id} ({self.status})>"
