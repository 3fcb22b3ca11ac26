import os
import logging

import click
from flask import Flask, jsonify

from app.config import config_by_name
from app.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Register blueprints ---
    from app.blueprints.webhooks import webhooks_bp
    from app.blueprints.payments import payments_bp
    from app.blueprints.tenants import tenants_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(tenants_bp)

    # --- Health check ---
    @app.route("/health")
    @limiter.exempt
    def health():
        return jsonify({"status": "ok"}), 200

    # --- Error handlers (JSON API only) ---
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("process-retries")
    def process_retries():
        """Run one sweep over the session retry queue.

        Meant for cron, every 5 minutes:
            */5 * * * * flask process-retries
        """
        from app.services.retry_service import process_session_retries

        result = process_session_retries()
        click.echo(f"Processed {result['processed']}/{result['total']} retries")
        if "error" in result:
            click.echo(f"ERROR: {result['error']}")

    @app.cli.command("retry-worker")
    @click.option("--interval", type=int, default=None,
                  help="Seconds between sweeps (default RETRY_SWEEP_INTERVAL_SECONDS).")
    @click.option("--once", is_flag=True, help="Run a single sweep and exit.")
    def retry_worker(interval, once):
        """Run the retry sweep in-process on a fixed interval.

        Usage:
            flask retry-worker
            flask retry-worker --interval 60
        """
        from app.services.retry_service import RetryScheduler

        scheduler = RetryScheduler(app, interval_seconds=interval)
        click.echo(f"Retry worker started (every {scheduler.interval}s)")
        try:
            scheduler.run_forever(max_cycles=1 if once else None)
        except KeyboardInterrupt:
            scheduler.stop()
        click.echo("Retry worker stopped")

    @app.cli.command("expire-payments")
    def expire_payments():
        """Mark pending payments past their expiry as expired."""
        from app.services.retry_service import expire_stale_payments

        count = expire_stale_payments()
        click.echo(f"Expired {count} pending payment(s)")

    @app.cli.command("send-trial-reminders")
    @click.option("--days", type=int, default=3, help="Remind trials ending within N days.")
    def send_trial_reminders(days):
        """Email tenants whose trial ends within --days days."""
        from app.services.trial_service import send_trial_reminders as _send

        result = _send(days=days)
        click.echo(f"Sent {result['sent']} reminder(s), {len(result['failed'])} failed")
        for failure in result["failed"]:
            click.echo(f"  {failure['email']}: {failure['error']}")
