from app.repositories.pending_payments import PendingPaymentStore  # noqa: F401
from app.repositories.retry_queue import RetryQueueStore  # noqa: F401
from app.repositories.tenants import TenantStore  # noqa: F401
