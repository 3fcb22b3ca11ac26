"""Tenants blueprint — /api/tenants/*

Route Map:
  GET /api/tenants/<tenant_id>/trial-status  — plan, trial progress, limits
  GET /api/tenants/<tenant_id>/usage/<resource>?count=N — can one more be added?
"""

import logging

from flask import Blueprint, jsonify, request

from app.decorators import internal_api_required
from app.services.trial_service import (
    RESOURCE_LIMIT_COLUMNS,
    check_usage_limit,
    get_trial_status,
)

tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")

logger = logging.getLogger(__name__)


@tenants_bp.route("/<tenant_id>/trial-status", methods=["GET"])
@internal_api_required
def trial_status(tenant_id):
    status = get_trial_status(tenant_id)
    if status is None:
        return jsonify({"error": "Tenant not found"}), 404
    return jsonify(status), 200


@tenants_bp.route("/<tenant_id>/usage/<resource>", methods=["GET"])
@internal_api_required
def usage_limit(tenant_id, resource):
    if resource not in RESOURCE_LIMIT_COLUMNS:
        return jsonify({"error": f"Unknown resource '{resource}'"}), 400

    count = request.args.get("count", type=int)
    if count is None or count < 0:
        return jsonify({"error": "count must be a non-negative integer"}), 400

    result = check_usage_limit(tenant_id, resource, count)
    if result is None:
        return jsonify({"error": "Tenant not found"}), 404
    return jsonify(result), 200
