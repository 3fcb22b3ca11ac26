"""Payments blueprint — /api/payments/*

Server-to-server API used by the main application. Every route requires
the X-Internal-Token header.

Route Map:
  POST /api/payments/link              — link a just-registered tenant to its payment
  POST /api/payments/retry-queue       — queue a deferred relink by session id
  POST /api/payments/checkout-session  — start a Stripe Checkout with a tracking id
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from app.decorators import internal_api_required
from app.extensions import db, limiter
from app.models.tenant import Tenant
from app.services.billing_service import PLAN_TYPES
from app.services.reconciliation import link_after_registration, queue_session_retry
from app.services.stripe_service import create_checkout_session

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _bad_request(message):
    return jsonify({"success": False, "error": message}), 400


@payments_bp.route("/link", methods=["POST"])
@limiter.limit("60 per minute")
@internal_api_required
def link_payment():
    """Link a newly registered tenant to its checkout payment.

    Body: { tenant_id, admin_email?, tracking_id?, session_id? }

    Always 200 with the LinkOutcome when the tenant exists — "no match"
    is an ordinary outcome, not an error. When nothing matched but a
    session id was supplied, a retry is queued for the webhook to catch up.
    """
    data = _json_body()
    tenant_id = (data.get("tenant_id") or "").strip()
    if not tenant_id:
        return _bad_request("tenant_id is required")

    if db.session.get(Tenant, tenant_id) is None:
        return jsonify({"success": False, "error": "Tenant not found"}), 404

    session_id = (data.get("session_id") or "").strip() or None
    tracking_id = (data.get("tracking_id") or "").strip() or None
    admin_email = (data.get("admin_email") or "").strip() or None

    outcome = link_after_registration(
        tenant_id,
        admin_email=admin_email,
        tracking_id=tracking_id,
        session_id=session_id,
    )
    body = outcome.to_dict()

    if not outcome.success and session_id:
        entry = queue_session_retry(
            tenant_id,
            session_id=session_id,
            tracking_id=tracking_id,
            admin_email=admin_email,
        )
        body["retry_queued"] = True
        body["retry_id"] = entry.id

    return jsonify(body), 200


@payments_bp.route("/retry-queue", methods=["POST"])
@limiter.limit("60 per minute")
@internal_api_required
def enqueue_retry():
    """Body: { tenant_id, session_id, tracking_id?, admin_email? }"""
    data = _json_body()
    tenant_id = (data.get("tenant_id") or "").strip()
    session_id = (data.get("session_id") or "").strip()
    if not tenant_id or not session_id:
        return _bad_request("tenant_id and session_id are required")

    if db.session.get(Tenant, tenant_id) is None:
        return jsonify({"success": False, "error": "Tenant not found"}), 404

    entry = queue_session_retry(
        tenant_id,
        session_id=session_id,
        tracking_id=(data.get("tracking_id") or None),
        admin_email=(data.get("admin_email") or None),
    )
    return jsonify({
        "success": True,
        "retry_id": entry.id,
        "next_retry_at": entry.next_retry_at.isoformat(),
    }), 201


@payments_bp.route("/checkout-session", methods=["POST"])
@limiter.limit("20 per minute")
@internal_api_required
def checkout_session():
    """Body: { price_id, email, tenant_id?, plan_type? }"""
    data = _json_body()
    price_id = (data.get("price_id") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not price_id or not email:
        return _bad_request("price_id and email are required")

    plan_type = data.get("plan_type")
    if plan_type and plan_type.lower() not in PLAN_TYPES:
        return _bad_request(f"Unknown plan_type '{plan_type}'")

    try:
        result = create_checkout_session(
            price_id, email, tenant_id=data.get("tenant_id"), plan_type=plan_type
        )
    except stripe.error.StripeError as e:
        logger.error(f"Stripe checkout session creation failed: {e}")
        return jsonify({"success": False, "error": "Could not start checkout"}), 502

    return jsonify({"success": True, **result}), 201
