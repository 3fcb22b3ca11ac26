"""Tenant linker — bind a resolved payment to a tenant and activate it.

Two writes, committed separately and always in this order:

    (a) payment: pending -> linked (status-guarded UPDATE, the
        single-assignment point; a second linker gets rowcount 0)
    (b) tenant: active, Stripe ids, plan type, plan limits, trial cleared

If (b) fails after (a) committed, the payment is reverted to pending
(compensating write). If the compensation itself fails we log CRITICAL
and stop — an operator has to fix the row by hand.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.errors import InvalidTransitionError, LinkError
from app.models.pending_payment import PendingPayment
from app.services.billing_service import (
    get_plan_limits,
    log_billing_audit,
    resolve_plan_type,
)
from app.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    tenant: object
    payment_id: str
    plan_type: str
    limits: dict
    strategy: str


class TenantLinker:
    def __init__(self, session, payments, tenants):
        self.session = session
        self.payments = payments
        self.tenants = tenants

    def link(self, payment, tenant_id, strategy, now=None):
        """Link `payment` to `tenant_id`. Returns LinkResult, raises LinkError."""
        now = now or utcnow()

        try:
            PendingPayment.check_transition(payment.status, PendingPayment.LINKED)
        except InvalidTransitionError as e:
            raise LinkError("payment_not_pending", f"Payment {payment.id}: {e}") from e
        if not payment.stripe_customer_id:
            raise LinkError(
                "missing_customer_id",
                f"Payment {payment.id} has no Stripe customer, cannot activate a tenant",
            )
        if not payment.stripe_subscription_id:
            raise LinkError(
                "missing_subscription_id",
                f"Payment {payment.id} has no Stripe subscription, cannot activate a tenant",
            )
        if self.tenants.get(tenant_id) is None:
            raise LinkError("tenant_not_found", f"Tenant {tenant_id} not found")

        existing = self.payments.find_linked_for_subscription(
            tenant_id, payment.stripe_subscription_id, exclude_id=payment.id
        )
        if existing is not None:
            self._supersede(payment, tenant_id, existing, now)
            raise LinkError(
                "already_linked",
                f"Tenant {tenant_id} already has payment {existing.id} "
                f"linked for subscription {payment.stripe_subscription_id}",
            )

        plan_type = resolve_plan_type(payment.plan_type, payment.metadata_, payment.amount)
        limits = get_plan_limits(plan_type)
        payment_id = payment.id
        customer_id = payment.stripe_customer_id
        subscription_id = payment.stripe_subscription_id
        session_id = payment.stripe_session_id

        # --- (a) payment write ---
        try:
            claimed = self.payments.mark_linked(payment_id, tenant_id, strategy, now=now)
            if not claimed:
                self.session.rollback()
                raise LinkError(
                    "payment_not_pending",
                    f"Payment {payment_id} was claimed by another linker",
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.error(f"Failed to mark payment {payment_id} linked", exc_info=True)
            raise

        # --- (b) tenant write ---
        try:
            tenant = self.tenants.activate(
                tenant_id,
                customer_id=customer_id,
                subscription_id=subscription_id,
                plan_type=plan_type,
                limits=limits,
                session_id=session_id,
                now=now,
            )
            log_billing_audit(self.session, tenant_id, "payment.linked", {
                "payment_id": payment_id,
                "stripe_session_id": session_id,
                "stripe_subscription_id": subscription_id,
                "plan_type": plan_type,
                "strategy": strategy,
            })
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(
                f"Tenant update failed after linking payment {payment_id} "
                f"to tenant {tenant_id}: {e}",
                exc_info=True,
            )
            self._compensate(payment_id, tenant_id, now, e)
            raise LinkError("tenant_update_failed", str(e)) from e

        logger.info(
            f"Linked payment {payment_id} to tenant {tenant_id} "
            f"({plan_type}, via {strategy})"
        )
        return LinkResult(
            tenant=tenant,
            payment_id=payment_id,
            plan_type=plan_type,
            limits=limits,
            strategy=strategy,
        )

    def _supersede(self, payment, tenant_id, existing, now):
        try:
            self.payments.mark_superseded(payment.id, now=now)
            log_billing_audit(self.session, tenant_id, "payment.superseded", {
                "payment_id": payment.id,
                "linked_payment_id": existing.id,
                "stripe_subscription_id": payment.stripe_subscription_id,
            })
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.error(f"Failed to mark payment {payment.id} superseded", exc_info=True)

    def _compensate(self, payment_id, tenant_id, now, cause):
        """Revert the payment to pending after a failed tenant write."""
        try:
            reverted = self.payments.revert_to_pending(payment_id, tenant_id, now=now)
            log_billing_audit(self.session, None, "payment.link_rolled_back", {
                "payment_id": payment_id,
                "tenant_id": tenant_id,
                "reverted": reverted,
                "error": str(cause),
            })
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.critical(
                f"Compensating rollback FAILED for payment {payment_id} "
                f"(tenant {tenant_id}); payment is stuck in 'linked' without an "
                f"active tenant — manual intervention required",
                exc_info=True,
            )
            return False

        if not reverted:
            logger.critical(
                f"Compensating rollback for payment {payment_id} matched no row; "
                f"its status changed underneath us — manual review required"
            )
        else:
            logger.warning(f"Rolled back payment {payment_id} to pending after failed link")
        return reverted
