"""Payment-to-tenant reconciliation — composition root and entry points.

build_reconciliation() wires the stores, resolver and linker around one
SQLAlchemy session. Webhook handlers, the retry sweep and the API
blueprints all go through it rather than touching db.session directly.

Entry points:
- link_after_registration: synchronous linking at tenant registration
- queue_session_retry:     defer a relink attempt to the retry sweep
"""

import logging
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.errors import LinkError
from app.extensions import db
from app.repositories import PendingPaymentStore, RetryQueueStore, TenantStore
from app.services.correlation import Criteria, CorrelationResolver, ResolverSettings
from app.services.linking_service import TenantLinker

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    session: object
    config: dict
    payments: PendingPaymentStore
    tenants: TenantStore
    retries: RetryQueueStore
    resolver: CorrelationResolver
    linker: TenantLinker


def build_reconciliation(session=None, config=None):
    session = session or db.session
    config = config if config is not None else current_app.config
    payments = PendingPaymentStore(session)
    tenants = TenantStore(session)
    return Reconciliation(
        session=session,
        config=config,
        payments=payments,
        tenants=tenants,
        retries=RetryQueueStore(session),
        resolver=CorrelationResolver(payments, ResolverSettings.from_config(config)),
        linker=TenantLinker(session, payments, tenants),
    )


@dataclass
class LinkOutcome:
    """Structured result of registration-time linking — never raised."""

    success: bool
    reason: str = None
    strategy: str = None
    payment_id: str = None
    plan_type: str = None
    error: str = None

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}


def link_after_registration(tenant_id, admin_email=None, tracking_id=None,
                            session_id=None, recon=None, now=None):
    """Try to bind a just-registered tenant to its checkout payment.

    reason "no_pending_payments" is the normal outcome for free signups;
    callers should not surface it to the user.
    """
    recon = recon or build_reconciliation()
    criteria = Criteria(
        tracking_id=tracking_id or None,
        session_id=session_id or None,
        email=admin_email.lower().strip() if admin_email else None,
    )
    logger.info(
        f"Registration linking for tenant {tenant_id} "
        f"(tracking={tracking_id}, session={session_id}, email={criteria.email})"
    )

    try:
        result = recon.resolver.resolve(criteria, now=now)
        if not result.found:
            logger.info(f"No payment linked for tenant {tenant_id}: {result.reason}")
            return LinkOutcome(success=False, reason=result.reason, strategy=result.strategy)

        linked = recon.linker.link(result.payment, tenant_id, result.strategy, now=now)
    except LinkError as e:
        logger.warning(f"Linking refused for tenant {tenant_id}: {e}")
        return LinkOutcome(success=False, reason=e.reason, error=str(e))
    except SQLAlchemyError as e:
        recon.session.rollback()
        logger.error(f"Store error while linking tenant {tenant_id}: {e}", exc_info=True)
        return LinkOutcome(success=False, reason="store_error", error=str(e))

    return LinkOutcome(
        success=True,
        strategy=linked.strategy,
        payment_id=linked.payment_id,
        plan_type=linked.plan_type,
    )


def queue_session_retry(tenant_id, session_id=None, tracking_id=None,
                        admin_email=None, recon=None, now=None):
    """Insert a retry-queue entry due in RETRY_INITIAL_DELAY_MINUTES."""
    recon = recon or build_reconciliation()
    entry = recon.retries.enqueue(
        tenant_id,
        session_id=session_id,
        tracking_id=tracking_id,
        admin_email=admin_email,
        delay_minutes=recon.config.get("RETRY_INITIAL_DELAY_MINUTES", 5),
        now=now,
    )
    recon.session.commit()
    logger.info(f"Queued session retry for tenant {tenant_id}, session {session_id}")
    return entry
