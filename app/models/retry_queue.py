"""Session retry queue model.

A deferred relink request created when registration-time linking could not
find the tenant's payment yet (typically because the checkout webhook has
not arrived). Only the retry sweep mutates these rows; retry_count only
ever goes up.
"""

import uuid

from app.extensions import db
from app.utils import utcnow


class RetryQueueEntry(db.Model):
    __tablename__ = "session_retry_queue"

    MAX_ATTEMPTS = 5

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id"), nullable=False
    )
    session_id = db.Column(db.String(255), nullable=True)
    tracking_id = db.Column(db.String(64), nullable=True)
    admin_email = db.Column(db.String(255), nullable=True)

    retry_count = db.Column(db.Integer, nullable=False, default=0)
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed = db.Column(db.Boolean, nullable=False, default=False)
    success = db.Column(db.Boolean, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        db.Index(
            "ix_session_retry_queue_due", "processed", "retry_count", "next_retry_at"
        ),
    )

    @property
    def is_exhausted(self):
        return self.retry_count >= self.MAX_ATTEMPTS

    def __repr__(self):
        return f"<RetryQueueEntry tenant={self.tenant_id} session={self.session_id} tries={self.retry_count}>"
