"""Stripe service — checkout creation and webhook ingestion.

Responsible for:
- Creating Stripe Checkout Sessions carrying our tracking id
- Verifying webhook signatures
- Dispatching verified events to per-type handlers
- Recording every event (processed / failed) in the stripe_events table

Acknowledgement and correctness are decoupled: once the signature checks
out the endpoint always answers 200, even when a handler failed. Failures
are persisted on the StripeEvent row instead, because a Stripe redelivery
would only replay the same idempotent-but-expensive path.
"""

import logging
import secrets
from datetime import timedelta

import stripe
from flask import current_app

from app.errors import LinkError
from app.extensions import db
from app.models.pending_payment import PendingPayment
from app.models.stripe_event import StripeEvent
from app.models.tenant import Tenant
from app.services import notification_service
from app.services.billing_service import (
    amount_from_minor_units,
    get_plan_limits,
    log_billing_audit,
    normalize_plan_type,
)
from app.services.reconciliation import build_reconciliation
from app.utils import from_timestamp, utcnow

logger = logging.getLogger(__name__)

# Checkout / subscription metadata keys that may carry our tenant id.
# "app_mosque_id" is what older checkout sessions were created with.
TENANT_METADATA_KEYS = ("tenant_id", "app_mosque_id")

# Stripe subscription status -> tenant subscription_status.
# Statuses not listed (past_due, unpaid, incomplete, paused) leave the
# tenant untouched; Stripe follows up with deleted / updated events.
STRIPE_STATUS_MAP = {
    "trialing": Tenant.TRIALING,
    "active": Tenant.ACTIVE,
    "canceled": Tenant.CANCELED,
    "incomplete_expired": Tenant.CANCELED,
}

STRATEGY_WEBHOOK_METADATA = "webhook_metadata"
STRATEGY_RECENT_TENANT = "recent_tenant_email"


def _to_dict(obj):
    """Plain dict from a StripeObject (or dict, or None)."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _tenant_id_from_metadata(metadata):
    for key in TENANT_METADATA_KEYS:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


def _customer_email(session_obj):
    details = session_obj.get("customer_details") or {}
    email = details.get("email") or session_obj.get("customer_email")
    return email.lower().strip() if email else None


def _invoice_subscription_id(invoice):
    """Extract the subscription id from a Stripe invoice.

    Newer API versions moved it from invoice.subscription to
    invoice.parent.subscription_details.subscription. Check both.
    """
    sub_id = invoice.get("subscription")
    if not sub_id:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        sub_id = details.get("subscription")
    return sub_id


def _invoice_metadata(invoice):
    details = invoice.get("subscription_details")
    if not details:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
    return _to_dict(details.get("metadata"))


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(price_id, customer_email, tenant_id=None, plan_type=None):
    """Create a subscription Checkout Session tagged with a fresh tracking id.

    The tracking id goes into session metadata and client_reference_id so
    the checkout.session.completed webhook can be matched back to whoever
    started it. When the tenant is already known its id is embedded too,
    which lets the webhook link immediately.

    Returns {"url", "session_id", "tracking_id"}.
    Raises stripe.error.StripeError on API failures.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]

    tracking_id = secrets.token_urlsafe(24)
    metadata = {"tracking_id": tracking_id}
    if tenant_id:
        metadata["tenant_id"] = str(tenant_id)
    plan = normalize_plan_type(plan_type)
    if plan:
        metadata["plan_type"] = plan

    session = stripe.checkout.Session.create(
        mode="subscription",
        customer_email=customer_email,
        client_reference_id=tracking_id,
        line_items=[{"price": price_id, "quantity": 1}],
        subscription_data={"metadata": metadata},
        metadata=metadata,
        success_url=(
            f"{app_base_url}/dashboard?payment_success=true"
            f"&session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{app_base_url}/dashboard/instellingen/abonnement?payment_canceled=true",
    )

    logger.info(f"Created checkout session {session.id} (tracking {tracking_id}, tenant {tenant_id})")
    return {"url": session.url, "session_id": session.id, "tracking_id": tracking_id}


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    `payload` must be the raw request body, byte for byte.
    Raises stripe.error.SignatureVerificationError on invalid signature.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event. Never raises.

    Returns (acknowledged: bool, message: str) where message is one of
    "processed", "already_processed", "failed".
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    existing = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if existing and existing.status == StripeEvent.PROCESSED:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    # --- Route to handler ---
    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "customer.subscription.created": _handle_subscription_changed,
        "customer.subscription.updated": _handle_subscription_changed,
        "customer.subscription.trial_will_end": _handle_trial_will_end,
        "customer.subscription.deleted": _handle_subscription_deleted,
        "invoice.payment_succeeded": _handle_payment_succeeded,
        "invoice.payment_failed": _handle_payment_failed,
    }

    status, error = StripeEvent.PROCESSED, None
    handler = handlers.get(event_type)
    if handler:
        try:
            handler(event)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            status, error = StripeEvent.FAILED, str(e)
    else:
        logger.info(f"Unhandled event type {event_type}")

    _record_event(event_id, event_type, status, error)
    return True, status


def _record_event(event_id, event_type, status, error=None):
    """Upsert the stripe_events row. Logging failures are logged, not raised."""
    try:
        record = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
        if record is None:
            record = StripeEvent(stripe_event_id=event_id, event_type=event_type, attempts=1)
            db.session.add(record)
        else:
            record.attempts = (record.attempts or 0) + 1
        record.status = status
        record.error_message = error
        record.processed_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.error(
            f"Could not record webhook event {event_id} ({event_type}) as {status}; "
            f"error was: {error}",
            exc_info=True,
        )


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed (subscription mode only).

    Upserts a PendingPayment keyed by the session id, then:
    - tenant id in metadata  -> link right away
    - otherwise              -> try the recent-tenant-by-email heuristic,
                                else leave the payment pending
    """
    session_obj = event["data"]["object"]
    if session_obj.get("mode") != "subscription":
        logger.info(f"Ignoring checkout session in mode {session_obj.get('mode')}")
        return

    session_id = session_obj.get("id")
    if not session_id:
        logger.warning("checkout.session.completed without a session id")
        return

    metadata = _to_dict(session_obj.get("metadata"))
    email = _customer_email(session_obj)
    recon = build_reconciliation()

    payment, created = recon.payments.upsert_by_session_id(
        session_id,
        {
            "stripe_customer_id": session_obj.get("customer"),
            "stripe_subscription_id": session_obj.get("subscription"),
            "tracking_id": metadata.get("tracking_id") or session_obj.get("client_reference_id"),
            "customer_email": email,
            "plan_type": normalize_plan_type(metadata.get("plan_type")),
            "amount": amount_from_minor_units(session_obj.get("amount_total")),
            "currency": session_obj.get("currency"),
            "metadata_": metadata,
        },
        ttl_hours=recon.config.get("PENDING_PAYMENT_TTL_HOURS", 2),
    )
    recon.session.commit()
    logger.info(
        f"{'Stored' if created else 'Refreshed'} pending payment {payment.id} "
        f"for session {session_id}"
    )

    if payment.status != PendingPayment.PENDING:
        logger.info(f"Payment for session {session_id} is already {payment.status}")
        return

    tenant_id = _tenant_id_from_metadata(metadata)
    if tenant_id:
        _link_and_notify(recon, payment, tenant_id, STRATEGY_WEBHOOK_METADATA)
        return

    _link_recent_tenant(recon, payment, email)


def _link_recent_tenant(recon, payment, email):
    """Best-effort immediate link: exactly one tenant registered in the last
    RECENT_TENANT_WINDOW_MINUTES with this contact email and no paid plan."""
    if not email:
        logger.info(f"Payment {payment.id} has no customer email, leaving pending")
        return

    window = recon.config.get("RECENT_TENANT_WINDOW_MINUTES", 30)
    since = utcnow() - timedelta(minutes=window)
    candidates = recon.tenants.find_recent_unsubscribed_by_email(email, since)

    if len(candidates) != 1:
        logger.info(
            f"{len(candidates)} recent tenant(s) match {email}, "
            f"leaving payment {payment.id} pending"
        )
        return

    _link_and_notify(recon, payment, candidates[0].id, STRATEGY_RECENT_TENANT)


def _link_and_notify(recon, payment, tenant_id, strategy):
    try:
        result = recon.linker.link(payment, tenant_id, strategy)
    except LinkError as e:
        if e.reason in ("payment_not_pending", "already_linked"):
            logger.info(f"Payment {payment.id} already handled elsewhere: {e}")
            return
        raise

    notification_service.notify_subscription_activated(result.tenant, result.plan_type)


def _handle_subscription_changed(event):
    """Handle customer.subscription.created / .updated.

    Writes subscription_status and trial_ends_at straight from the event.
    Last write wins — Stripe does not guarantee ordering between these two.
    """
    sub = event["data"]["object"]
    metadata = _to_dict(sub.get("metadata"))
    tenant_id = _tenant_id_from_metadata(metadata)
    if not tenant_id:
        logger.warning(f"{event['type']}: no tenant id in metadata for sub={sub.get('id')}")
        return

    recon = build_reconciliation()
    tenant = recon.tenants.get(tenant_id)
    if tenant is None:
        logger.warning(f"{event['type']}: tenant {tenant_id} not found")
        return

    stripe_status = sub.get("status")
    status = STRIPE_STATUS_MAP.get(stripe_status)
    if status is None:
        logger.info(f"{event['type']}: status '{stripe_status}' not mirrored for tenant {tenant_id}")
        return

    customer_id = tenant.stripe_customer_id or sub.get("customer")
    subscription_id = tenant.stripe_subscription_id or sub.get("id")
    if status == Tenant.ACTIVE and not (customer_id and subscription_id):
        logger.warning(
            f"{event['type']}: refusing to activate tenant {tenant_id} "
            f"without customer and subscription ids"
        )
        return
    recon.tenants.attach_stripe_ids(tenant, customer_id, subscription_id)

    trial_ends_at = from_timestamp(sub.get("trial_end"))
    if status == Tenant.TRIALING and trial_ends_at is None and tenant.trial_ends_at is None:
        trial_ends_at = utcnow() + timedelta(days=recon.config.get("TRIAL_DAYS", 14))

    if status == Tenant.ACTIVE:
        plan = normalize_plan_type(metadata.get("plan_type"))
        if plan:
            recon.tenants.set_plan(tenant, plan, get_plan_limits(plan))

    recon.tenants.set_status(tenant, status, trial_ends_at=trial_ends_at)
    log_billing_audit(recon.session, tenant.id, event["type"].replace("customer.", ""), {
        "stripe_subscription_id": sub.get("id"),
        "stripe_status": stripe_status,
        "status": status,
    })
    recon.session.commit()


def _handle_trial_will_end(event):
    """Handle customer.subscription.trial_will_end — notification only."""
    sub = event["data"]["object"]
    recon = build_reconciliation()
    tenant = _tenant_for_subscription(recon, sub)
    if tenant is None:
        logger.warning(f"trial_will_end: cannot find tenant for sub={sub.get('id')}")
        return

    logger.info(f"Trial ending for tenant {tenant.id}")
    notification_service.notify_trial_will_end(tenant, from_timestamp(sub.get("trial_end")))


def _handle_subscription_deleted(event):
    """Handle customer.subscription.deleted — tenant becomes canceled."""
    sub = event["data"]["object"]
    recon = build_reconciliation()
    tenant = _tenant_for_subscription(recon, sub)
    if tenant is None:
        logger.warning(f"subscription.deleted: cannot find tenant for sub={sub.get('id')}")
        return

    recon.tenants.set_status(tenant, Tenant.CANCELED)
    log_billing_audit(recon.session, tenant.id, "subscription.deleted", {
        "stripe_subscription_id": sub.get("id"),
    })
    recon.session.commit()
    logger.info(f"Subscription deleted for tenant {tenant.id}, status set to canceled")

    notification_service.notify_subscription_canceled(tenant)


def _handle_payment_succeeded(event):
    """Handle invoice.payment_succeeded — tenant active, trial cleared."""
    invoice = event["data"]["object"]
    customer_id = invoice.get("customer")
    subscription_id = _invoice_subscription_id(invoice)
    amount = amount_from_minor_units(invoice.get("amount_paid"))
    recon = build_reconciliation()

    tenant = _tenant_for_invoice(recon, invoice, subscription_id, customer_id)
    audit = {
        "stripe_invoice_id": invoice.get("id"),
        "stripe_subscription_id": subscription_id,
        "stripe_customer_id": customer_id,
        "amount_paid": str(amount) if amount is not None else None,
        "currency": invoice.get("currency"),
        "billing_reason": invoice.get("billing_reason"),
    }

    if tenant is None:
        logger.warning(
            f"invoice.payment_succeeded: cannot find tenant for customer={customer_id}"
        )
        log_billing_audit(recon.session, None, "invoice.payment_succeeded", audit)
        recon.session.commit()
        return

    customer_id = tenant.stripe_customer_id or customer_id
    subscription_id = tenant.stripe_subscription_id or subscription_id
    if customer_id and subscription_id:
        recon.tenants.attach_stripe_ids(tenant, customer_id, subscription_id)
        recon.tenants.set_status(tenant, Tenant.ACTIVE)
    else:
        logger.warning(
            f"invoice.payment_succeeded: tenant {tenant.id} is missing a customer "
            f"or subscription id, not activating"
        )
    log_billing_audit(recon.session, tenant.id, "invoice.payment_succeeded", audit)
    recon.session.commit()

    notification_service.notify_payment_succeeded(tenant, amount, invoice.get("currency"))


def _handle_payment_failed(event):
    """Handle invoice.payment_failed — notify + audit only.

    Subscription status is left alone; Stripe sends the follow-up
    subscription.updated / .deleted events itself.
    """
    invoice = event["data"]["object"]
    customer_id = invoice.get("customer")
    subscription_id = _invoice_subscription_id(invoice)
    amount = amount_from_minor_units(invoice.get("amount_due"))
    recon = build_reconciliation()

    tenant = _tenant_for_invoice(recon, invoice, subscription_id, customer_id)
    log_billing_audit(recon.session, tenant.id if tenant else None, "invoice.payment_failed", {
        "stripe_invoice_id": invoice.get("id"),
        "stripe_subscription_id": subscription_id,
        "stripe_customer_id": customer_id,
        "amount_due": str(amount) if amount is not None else None,
        "attempt_count": invoice.get("attempt_count"),
    })
    recon.session.commit()

    if tenant is None:
        logger.warning(f"invoice.payment_failed: cannot find tenant for customer={customer_id}")
        return

    notification_service.notify_payment_failed(tenant, amount, invoice.get("currency"))


# ──────────────────────────────────────────────
# Tenant lookup
# ──────────────────────────────────────────────

def _tenant_for_subscription(recon, sub):
    tenant_id = _tenant_id_from_metadata(_to_dict(sub.get("metadata")))
    tenant = recon.tenants.get(tenant_id) if tenant_id else None
    return tenant or recon.tenants.find_by_subscription_id(sub.get("id"))


def _tenant_for_invoice(recon, invoice, subscription_id, customer_id):
    tenant = recon.tenants.find_by_subscription_id(subscription_id)
    if tenant is None:
        tenant = recon.tenants.find_by_customer_id(customer_id)
    if tenant is None:
        tenant_id = _tenant_id_from_metadata(_invoice_metadata(invoice))
        tenant = recon.tenants.get(tenant_id) if tenant_id else None
    return tenant
