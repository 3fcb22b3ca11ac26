"""Billing domain exceptions.

Correlation misses (no match, ambiguous match, expired payment) are NOT
exceptions — they come back as ResolutionResult values. These classes
cover the cases where a write was refused or failed.
"""


class BillingError(Exception):
    """Base class for payment reconciliation errors."""


class InvalidTransitionError(BillingError, ValueError):
    """A pending payment was asked to move to a status it cannot reach."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition payment from '{current}' to '{target}'")


class TenantNotFoundError(BillingError):
    def __init__(self, tenant_id):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} not found")


class LinkError(BillingError):
    """Linking a payment to a tenant was refused or could not complete.

    reason is one of:
        payment_not_pending   — another linker got there first
        missing_customer_id   — payment has no Stripe customer (cannot activate)
        missing_subscription_id — payment has no Stripe subscription (cannot activate)
        already_linked        — tenant already has a linked payment for this subscription
        tenant_not_found      — tenant row missing
        tenant_update_failed  — tenant write failed, payment write was rolled back
    """

    def __init__(self, reason, message=None):
        self.reason = reason
        super().__init__(message or reason)
