"""Stripe event model (webhook log + idempotency table).

Every verified webhook event is recorded by its Stripe event ID together
with the outcome of processing it. Events recorded as "processed" are
skipped on redelivery. Events recorded as "failed" keep the error text
so an operator can review them; the webhook endpoint still acknowledged
them to Stripe.
"""

import uuid

from app.extensions import db
from app.utils import utcnow


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    PROCESSED = "processed"
    FAILED = "failed"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False, index=True
    )  # e.g. "checkout.session.completed"
    status = db.Column(db.String(20), nullable=False, default=PROCESSED)
    error_message = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=1)
    processed_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type}, {self.status})>"
