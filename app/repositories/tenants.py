"""Tenant store — subscription-state reads and writes.

Neither activate() nor set_status() will write subscription_status =
"active" for a tenant missing its Stripe customer or subscription id.

Methods flush but do NOT commit — the caller commits.
"""

from datetime import timedelta

from sqlalchemy import func, or_

from app.errors import TenantNotFoundError
from app.models.tenant import Tenant
from app.repositories.base import BaseStore
from app.utils import utcnow


class TenantStore(BaseStore):
    model = Tenant

    def get_or_raise(self, tenant_id):
        tenant = self.get(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    def find_by_subscription_id(self, subscription_id):
        if not subscription_id:
            return None
        return self.query().filter_by(stripe_subscription_id=subscription_id).first()

    def find_by_customer_id(self, customer_id):
        if not customer_id:
            return None
        return self.query().filter_by(stripe_customer_id=customer_id).first()

    def find_recent_unsubscribed_by_email(self, email, since):
        """Tenants created since `since` whose contact email matches and
        whose subscription is still trialing or unset."""
        return (
            self.query()
            .filter(func.lower(Tenant.contact_email) == email.lower().strip())
            .filter(Tenant.created_at >= since)
            .filter(or_(
                Tenant.subscription_status.is_(None),
                Tenant.subscription_status == Tenant.TRIALING,
            ))
            .all()
        )

    # ── Writes (flush only) ──

    def activate(self, tenant_id, customer_id, subscription_id, plan_type,
                 limits, session_id=None, now=None):
        """Set a tenant active on a paid plan and clear its trial."""
        if not customer_id or not subscription_id:
            raise ValueError("Cannot activate a tenant without Stripe customer and subscription ids")
        now = now or utcnow()
        tenant = self.get_or_raise(tenant_id)
        tenant.stripe_customer_id = customer_id
        tenant.stripe_subscription_id = subscription_id
        tenant.subscription_status = Tenant.ACTIVE
        tenant.plan_type = plan_type
        tenant.max_students = limits["max_students"]
        tenant.max_teachers = limits["max_teachers"]
        tenant.trial_started_at = None
        tenant.trial_ends_at = None
        tenant.payment_linked_at = now
        if session_id:
            tenant.linked_session_id = session_id
        tenant.updated_at = now
        self.session.flush()
        return tenant

    def set_status(self, tenant, status, trial_ends_at=None, now=None):
        """Write a subscription status coming from a Stripe lifecycle event.

        Trial fields are cleared for any status other than trialing.
        """
        if status not in Tenant.STATUSES:
            raise ValueError(f"Unknown subscription status '{status}'")
        if status == Tenant.ACTIVE and not tenant.has_stripe_ids:
            raise ValueError("Cannot set status active without Stripe customer and subscription ids")
        now = now or utcnow()
        tenant.subscription_status = status
        if status == Tenant.TRIALING:
            if trial_ends_at is not None:
                tenant.trial_ends_at = trial_ends_at
        else:
            tenant.trial_started_at = None
            tenant.trial_ends_at = None
        tenant.updated_at = now
        self.session.flush()
        return tenant

    def attach_stripe_ids(self, tenant, customer_id=None, subscription_id=None):
        """Fill in Stripe ids the tenant doesn't have yet; never overwrites."""
        if customer_id and not tenant.stripe_customer_id:
            tenant.stripe_customer_id = customer_id
        if subscription_id and not tenant.stripe_subscription_id:
            tenant.stripe_subscription_id = subscription_id
        self.session.flush()
        return tenant

    def set_plan(self, tenant, plan_type, limits):
        tenant.plan_type = plan_type
        tenant.max_students = limits["max_students"]
        tenant.max_teachers = limits["max_teachers"]
        self.session.flush()
        return tenant

    def start_trial(self, tenant, limits, days=14, now=None):
        now = now or utcnow()
        tenant.trial_started_at = now
        tenant.trial_ends_at = now + timedelta(days=days)
        tenant.max_students = limits["max_students"]
        tenant.max_teachers = limits["max_teachers"]
        if tenant.subscription_status is None:
            tenant.subscription_status = Tenant.TRIALING
        tenant.updated_at = now
        self.session.flush()
        return tenant
