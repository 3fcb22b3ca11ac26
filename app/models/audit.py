"""Audit event model.

Logs billing actions (payment linked, rollback, invoice outcomes,
subscription changes) for operator review and debugging.
"""

import uuid

from app.extensions import db
from app.utils import utcnow


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id"), nullable=True
    )
    action = db.Column(db.String(255), nullable=False)  # e.g. "payment.linked"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid clash with SQLAlchemy
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    # --- Relationships ---
    tenant = db.relationship("Tenant", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
