"""
Email service — transactional and bulk email over SMTP.

Usage:
    from app.services.email_service import send_email

    send_email(
        to="admin@moskee.nl",
        subject="Abonnement geactiveerd",
        template="emails/subscription_activated.html",
        context={"tenant_name": "Al-Fath"},
    )

send_email() hands delivery to a background thread so webhook handlers
never wait on SMTP. send_bulk_email() is synchronous and chunked: it sends
NOTIFY_BATCH_SIZE recipients per batch with NOTIFY_BATCH_DELAY_SECONDS
between batches, and collects per-recipient failures instead of aborting.
"""

import logging
import smtplib
import threading
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(RuntimeError):
    pass


def _deliver(app, msg):
    """Send one message. Raises on any failure."""
    host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    port = app.config.get("MAIL_SMTP_PORT", 587)
    username = app.config.get("MAIL_USERNAME")
    password = app.config.get("MAIL_PASSWORD")

    if not username or not password:
        raise EmailNotConfiguredError("MAIL_USERNAME or MAIL_PASSWORD not configured")

    with smtplib.SMTP(host, port, timeout=30) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        server.login(username, password)
        server.send_message(msg)


def _send_smtp(app, msg):
    """Send an email via SMTP in a background thread (non-blocking)."""
    with app.app_context():
        try:
            _deliver(app, msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except EmailNotConfiguredError as e:
            logger.warning(f"Email not sent — {e}.")
        except Exception as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def _build_message(app, to, subject, html_body, reply_to=None):
    from_name = app.config.get("MAIL_FROM_NAME", "Madrasa Beheer")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME") or ""

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))
    return msg


def send_email(to, subject, template, context=None, reply_to=None):
    """
    Send a templated HTML email without blocking the request.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.
    """
    app = current_app._get_current_object()
    html_body = render_template(template, **(context or {}))
    msg = _build_message(app, to, subject, html_body, reply_to)

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()


def send_bulk_email(recipients, subject, template, context=None,
                    batch_size=None, delay_seconds=None):
    """Send the same templated email to many recipients, in batches.

    Returns {"sent": int, "failed": [{"email": ..., "error": ...}]}.
    A failing recipient never stops the remaining batches.
    """
    app = current_app._get_current_object()
    batch_size = batch_size or app.config.get("NOTIFY_BATCH_SIZE", 10)
    if delay_seconds is None:
        delay_seconds = app.config.get("NOTIFY_BATCH_DELAY_SECONDS", 1.0)
    context = context or {}

    recipients = [r for r in recipients if r]
    batches = [
        recipients[i:i + batch_size] for i in range(0, len(recipients), batch_size)
    ]
    sent = 0
    failed = []

    for index, batch in enumerate(batches):
        for recipient in batch:
            try:
                html_body = render_template(template, recipient=recipient, **context)
                _deliver(app, _build_message(app, recipient, subject, html_body))
                sent += 1
            except Exception as e:
                logger.error(f"Bulk email to {recipient} failed: {e}")
                failed.append({"email": recipient, "error": str(e)})

        if index < len(batches) - 1 and delay_seconds:
            time.sleep(delay_seconds)

    logger.info(f"Bulk email '{subject}': {sent} sent, {len(failed)} failed")
    return {"sent": sent, "failed": failed}
