"""Trial service — trial window, plan limits and usage checks.

Trials run TRIAL_DAYS (14) from trial_started_at. Tenants on the trial plan
that never had their trial initialised get it started on first lookup.
"""

import logging
from datetime import timedelta

from flask import current_app

from app.models.tenant import Tenant
from app.services.billing_service import get_plan_limits
from app.services.email_service import send_bulk_email
from app.services.reconciliation import build_reconciliation
from app.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

RESOURCE_LIMIT_COLUMNS = {
    "students": "max_students",
    "teachers": "max_teachers",
}


def get_trial_status(tenant_id, recon=None, now=None):
    """Return plan, trial progress and limits for a tenant, or None if missing."""
    recon = recon or build_reconciliation()
    now = now or utcnow()
    trial_days = recon.config.get("TRIAL_DAYS", 14)

    tenant = recon.tenants.get(tenant_id)
    if tenant is None:
        return None

    if tenant.plan_type == "trial" and tenant.trial_started_at is None:
        recon.tenants.start_trial(
            tenant, get_plan_limits("trial"), days=trial_days, now=now
        )
        recon.session.commit()
        logger.info(f"Initialised {trial_days}-day trial for tenant {tenant_id}")

    started = as_utc(tenant.trial_started_at)
    if started is not None:
        days_used = max(0, (now - started).days)
    else:
        days_used = 0
    days_remaining = max(0, trial_days - days_used)
    is_trial = tenant.plan_type == "trial"

    return {
        "plan_type": tenant.plan_type,
        "subscription_status": tenant.subscription_status,
        "days_used": days_used,
        "days_remaining": days_remaining if is_trial else None,
        "is_expired": is_trial and days_remaining == 0,
        "trial_ends_at": as_utc(tenant.trial_ends_at).isoformat() if tenant.trial_ends_at else None,
        "max_students": tenant.max_students,
        "max_teachers": tenant.max_teachers,
        "is_professional": tenant.is_unlimited,
    }


def check_usage_limit(tenant_id, resource, current_count, recon=None, now=None):
    """Can the tenant add one more `resource` ("students" / "teachers")?

    Raises ValueError for an unknown resource type.
    """
    if resource not in RESOURCE_LIMIT_COLUMNS:
        raise ValueError(f"Unknown resource type '{resource}'")

    status = get_trial_status(tenant_id, recon=recon, now=now)
    if status is None:
        return None
    if status["is_professional"]:
        return {"allowed": True, "current_count": current_count, "max_allowed": None, "message": None}

    max_allowed = status[RESOURCE_LIMIT_COLUMNS[resource]]
    if max_allowed is None:
        max_allowed = get_plan_limits(status["plan_type"])[RESOURCE_LIMIT_COLUMNS[resource]]
    allowed = max_allowed is None or current_count < max_allowed

    message = None
    if not allowed:
        message = (
            f"Limiet bereikt: maximaal {max_allowed} {resource}. "
            f"Upgrade naar Professional voor een onbeperkt aantal."
        )
    return {
        "allowed": allowed,
        "current_count": current_count,
        "max_allowed": max_allowed,
        "message": message,
    }


def send_trial_reminders(days=3, recon=None, now=None):
    """Email every trialing tenant whose trial ends within `days` days."""
    recon = recon or build_reconciliation()
    now = now or utcnow()

    tenants = (
        recon.tenants.query()
        .filter(Tenant.subscription_status == Tenant.TRIALING)
        .filter(Tenant.trial_ends_at.isnot(None))
        .filter(Tenant.trial_ends_at > now)
        .filter(Tenant.trial_ends_at <= now + timedelta(days=days))
        .all()
    )
    recipients = sorted({t.contact_email for t in tenants if t.contact_email})
    if not recipients:
        logger.info("No trials ending soon, no reminders to send")
        return {"sent": 0, "failed": []}

    app_base_url = current_app.config["APP_BASE_URL"]
    return send_bulk_email(
        recipients,
        subject="Je proefperiode loopt bijna af",
        template="emails/trial_reminder.html",
        context={
            "days": days,
            "billing_url": f"{app_base_url}/dashboard/instellingen/abonnement",
        },
    )
