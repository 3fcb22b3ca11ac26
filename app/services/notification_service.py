"""Tenant billing notifications.

Called only after the related state change has been committed. Every
helper swallows its own errors: a failed email must never undo or block
a subscription transition.
"""

import logging

from flask import current_app

from app.services.email_service import send_email

logger = logging.getLogger(__name__)


def _notify(tenant, subject, template, context=None):
    if tenant is None or not tenant.contact_email:
        logger.info(f"No contact email for tenant, skipping '{template}'")
        return False
    try:
        app_base_url = current_app.config["APP_BASE_URL"]
        send_email(
            to=tenant.contact_email,
            subject=subject,
            template=template,
            context=dict(
                tenant_name=tenant.name,
                dashboard_url=f"{app_base_url}/dashboard",
                billing_url=f"{app_base_url}/dashboard/instellingen/abonnement",
                **(context or {}),
            ),
        )
        logger.info(f"Queued '{template}' for tenant {tenant.id} ({tenant.contact_email})")
        return True
    except Exception as e:
        # Never let email failure break the webhook / linking flow
        logger.error(f"Failed to send '{template}' for tenant {tenant.id}: {e}")
        return False


def notify_subscription_activated(tenant, plan_type):
    return _notify(
        tenant,
        f"Abonnement geactiveerd — {tenant.name}",
        "emails/subscription_activated.html",
        {"plan_type": plan_type},
    )


def notify_trial_will_end(tenant, trial_end=None):
    return _notify(
        tenant,
        f"Je proefperiode loopt bijna af — {tenant.name}",
        "emails/trial_will_end.html",
        {"trial_end": trial_end.strftime("%d-%m-%Y") if trial_end else None},
    )


def notify_payment_succeeded(tenant, amount=None, currency=None):
    return _notify(
        tenant,
        f"Betaling ontvangen — {tenant.name}",
        "emails/payment_succeeded.html",
        {"amount": amount, "currency": (currency or "eur").upper()},
    )


def notify_payment_failed(tenant, amount=None, currency=None):
    return _notify(
        tenant,
        f"Betaling mislukt — {tenant.name}",
        "emails/payment_failed.html",
        {"amount": amount, "currency": (currency or "eur").upper()},
    )


def notify_subscription_canceled(tenant):
    return _notify(
        tenant,
        f"Abonnement opgezegd — {tenant.name}",
        "emails/subscription_canceled.html",
    )
