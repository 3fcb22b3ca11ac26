"""Billing service — plan derivation and billing audit helpers.

Responsible for:
- Mapping a payment (metadata / amount) to a plan type
- Deriving per-plan resource limits (students / teachers)
- Writing billing audit events
"""

import logging
from decimal import Decimal, InvalidOperation

from app.models.audit import AuditEvent

logger = logging.getLogger(__name__)

PLAN_TYPES = ("trial", "basic", "professional", "premium")

# None = unlimited
PLAN_LIMITS = {
    "trial": {"max_students": 10, "max_teachers": 2},
    "basic": {"max_students": 10, "max_teachers": 2},
    "professional": {"max_students": None, "max_teachers": None},
    "premium": {"max_students": None, "max_teachers": None},
}

# Amount (major units) at or above which an unlabelled payment is premium.
PREMIUM_AMOUNT_THRESHOLD = Decimal("49")


def get_plan_limits(plan_type):
    """Return {"max_students", "max_teachers"} for a plan type.

    Unknown plan types get the restrictive trial limits.
    """
    limits = PLAN_LIMITS.get(plan_type)
    if limits is None:
        logger.warning(f"Unknown plan type '{plan_type}', applying trial limits")
        limits = PLAN_LIMITS["trial"]
    return dict(limits)


def normalize_plan_type(value):
    """Return a known plan type or None."""
    if not value:
        return None
    value = str(value).strip().lower()
    return value if value in PLAN_TYPES else None


def resolve_plan_type(plan_type=None, metadata=None, amount=None):
    """Work out which plan a payment bought.

    Order: explicit plan_type column, then metadata["plan_type"], then the
    amount (>= 49 is premium, anything else professional).
    """
    plan = normalize_plan_type(plan_type)
    if plan:
        return plan

    plan = normalize_plan_type((metadata or {}).get("plan_type"))
    if plan:
        return plan

    if amount is not None:
        try:
            if Decimal(str(amount)) >= PREMIUM_AMOUNT_THRESHOLD:
                return "premium"
        except InvalidOperation:
            logger.warning(f"Unparseable payment amount {amount!r}")
    return "professional"


def amount_from_minor_units(value):
    """Stripe amounts are in cents; store major units."""
    if value is None:
        return None
    return (Decimal(value) / Decimal(100)).quantize(Decimal("0.01"))


def log_billing_audit(session, tenant_id, action, metadata=None):
    """Log a billing-related audit event.

    Webhook and sweep events are system-initiated, so there is no actor.
    """
    event = AuditEvent(
        tenant_id=tenant_id,
        action=action,
        metadata_=metadata or {},
    )
    session.add(event)
    session.flush()
    return event
