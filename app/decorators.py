"""
Custom route decorators for access control.

- internal_api_required: the caller must present INTERNAL_API_TOKEN in the
  X-Internal-Token header. Used by the endpoints the main application
  calls server-to-server (registration linking, retry enqueue, checkout).
"""

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def internal_api_required(f):
    """Require a matching X-Internal-Token header."""

    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("INTERNAL_API_TOKEN")
        supplied = request.headers.get("X-Internal-Token", "")

        # An unset token locks the endpoints rather than opening them
        if not expected or not hmac.compare_digest(supplied, expected):
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated
