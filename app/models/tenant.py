"""Tenant model.

A tenant is one customer organisation (a mosque running a weekend school).
Subscription columns are written by the payment linker and by the Stripe
subscription webhook handlers only.

Invariants:
    subscription_status == "active"   -> stripe_customer_id and
                                         stripe_subscription_id are set,
                                         limits reflect plan_type
    subscription_status == "trialing" -> trial_ends_at is set
"""

import uuid

from app.extensions import db
from app.utils import utcnow


class Tenant(db.Model):
    __tablename__ = "tenants"

    # -- Subscription statuses --
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELED = "canceled"
    FREE = "free"
    STATUSES = [TRIALING, ACTIVE, CANCELED, FREE]

    UNLIMITED_PLANS = ("professional", "premium")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    subdomain = db.Column(
        db.String(100), unique=True, nullable=False
    )  # routing + branding
    contact_email = db.Column(db.String(255), nullable=True, index=True)

    subscription_status = db.Column(
        db.String(50), nullable=True
    )  # trialing | active | canceled | free, null = not yet set
    plan_type = db.Column(
        db.String(50), nullable=False, default="trial"
    )  # trial | basic | professional | premium
    trial_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    max_students = db.Column(db.Integer, nullable=True)  # null = unlimited
    max_teachers = db.Column(db.Integer, nullable=True)  # null = unlimited

    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    payment_linked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    linked_session_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # --- Relationships ---
    pending_payments = db.relationship(
        "PendingPayment", back_populates="tenant", lazy="dynamic"
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="tenant", lazy="dynamic"
    )

    @property
    def has_stripe_ids(self):
        """Both Stripe ids are required before the tenant may go active."""
        return bool(self.stripe_customer_id and self.stripe_subscription_id)

    @property
    def is_unlimited(self):
        """Professional and premium plans have no resource limits."""
        return self.plan_type in self.UNLIMITED_PLANS

    def __repr__(self):
        return f"<Tenant {self.subdomain} ({self.subscription_status})>"
