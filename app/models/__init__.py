# Import every model so Alembic can discover the tables.

from app.models.tenant import Tenant  # noqa: F401
from app.models.pending_payment import PendingPayment  # noqa: F401
from app.models.retry_queue import RetryQueueEntry  # noqa: F401
from app.models.stripe_event import StripeEvent  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
