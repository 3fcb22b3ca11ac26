"""Correlation resolver — find the pending payment that belongs to a tenant.

Webhook deliveries carry no session context, so a checkout has to be
matched back to the tenant after the fact. The resolver runs an ordered
chain of strategies, most trustworthy first, and stops at the first hit:

    1. tracking_id  — id we issued when creating the checkout session
    2. session_id   — Stripe checkout session id
    3. email        — customer email, pending and created in the last 30 min;
                      the most recent wins when several match (logged)
    4. time_window  — only when no tracking id, session id or email was
                      supplied: any pending payment from the last 10 min,
                      if there is exactly one; two or more is ambiguous

A hit older than PAYMENT_MAX_AGE_MINUTES (1 hour) is rejected as
payment_expired, whichever strategy found it. Rows past their
expires_at never match at all.

Each strategy is a plain function (store, criteria, now, settings) ->
ResolutionResult, so the order and tie-break rules can be tested on
their own.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from app.utils import utcnow

logger = logging.getLogger(__name__)

STRATEGY_TRACKING_ID = "tracking_id"
STRATEGY_SESSION_ID = "session_id"
STRATEGY_EMAIL = "email"
STRATEGY_TIME_WINDOW = "time_window"

REASON_NO_PENDING = "no_pending_payments"
REASON_AMBIGUOUS = "ambiguous_match"
REASON_EXPIRED = "payment_expired"


@dataclass(frozen=True)
class Criteria:
    tracking_id: str = None
    session_id: str = None
    email: str = None

    @property
    def has_identifiers(self):
        return bool(self.tracking_id or self.session_id or self.email)


@dataclass(frozen=True)
class ResolverSettings:
    max_age_minutes: int = 60
    email_window_minutes: int = 30
    time_window_minutes: int = 10

    @classmethod
    def from_config(cls, config):
        return cls(
            max_age_minutes=config.get("PAYMENT_MAX_AGE_MINUTES", 60),
            email_window_minutes=config.get("EMAIL_MATCH_WINDOW_MINUTES", 30),
            time_window_minutes=config.get("TIME_WINDOW_MINUTES", 10),
        )


@dataclass(frozen=True)
class ResolutionResult:
    found: bool
    payment: object = None
    strategy: str = None
    reason: str = None

    @classmethod
    def hit(cls, payment, strategy):
        return cls(found=True, payment=payment, strategy=strategy)

    @classmethod
    def miss(cls, reason=REASON_NO_PENDING, strategy=None, payment=None):
        return cls(found=False, payment=payment, strategy=strategy, reason=reason)


# ──────────────────────────────────────────────
# Strategies
# ──────────────────────────────────────────────

def by_tracking_id(store, criteria, now, settings):
    if not criteria.tracking_id:
        return ResolutionResult.miss()
    payment = store.find_pending_by_tracking_id(criteria.tracking_id, now=now)
    if payment is None:
        return ResolutionResult.miss()
    return ResolutionResult.hit(payment, STRATEGY_TRACKING_ID)


def by_session_id(store, criteria, now, settings):
    if not criteria.session_id:
        return ResolutionResult.miss()
    payment = store.find_pending_by_session_id(criteria.session_id, now=now)
    if payment is None:
        return ResolutionResult.miss()
    return ResolutionResult.hit(payment, STRATEGY_SESSION_ID)


def by_recent_email(store, criteria, now, settings):
    if not criteria.email:
        return ResolutionResult.miss()
    since = now - timedelta(minutes=settings.email_window_minutes)
    payments = store.find_pending_by_email(criteria.email, since, now=now)
    if not payments:
        return ResolutionResult.miss()
    if len(payments) > 1:
        logger.warning(
            f"{len(payments)} pending payments match email {criteria.email} "
            f"in the last {settings.email_window_minutes} min, using the most recent"
        )
    return ResolutionResult.hit(payments[0], STRATEGY_EMAIL)


def by_time_window(store, criteria, now, settings):
    if criteria.has_identifiers:
        return ResolutionResult.miss()
    since = now - timedelta(minutes=settings.time_window_minutes)
    payments = store.find_pending_created_since(since, now=now)
    if not payments:
        return ResolutionResult.miss()
    if len(payments) > 1:
        logger.info(
            f"Time-window fallback found {len(payments)} candidates, refusing to guess"
        )
        return ResolutionResult.miss(REASON_AMBIGUOUS)
    return ResolutionResult.hit(payments[0], STRATEGY_TIME_WINDOW)


DEFAULT_STRATEGIES = (
    by_tracking_id,
    by_session_id,
    by_recent_email,
    by_time_window,
)


# ──────────────────────────────────────────────
# Driver
# ──────────────────────────────────────────────

class CorrelationResolver:
    def __init__(self, payments, settings=None, strategies=DEFAULT_STRATEGIES):
        self.payments = payments
        self.settings = settings or ResolverSettings()
        self.strategies = tuple(strategies)

    def resolve(self, criteria, now=None, strategies=None):
        """Run the strategy chain and return the first hit.

        Returns a ResolutionResult; a miss carries reason
        no_pending_payments, ambiguous_match or payment_expired.
        """
        now = now or utcnow()
        ambiguous = False

        for strategy in strategies or self.strategies:
            result = strategy(self.payments, criteria, now, self.settings)
            if not result.found:
                ambiguous = ambiguous or result.reason == REASON_AMBIGUOUS
                continue

            max_age = timedelta(minutes=self.settings.max_age_minutes)
            if result.payment.age(now) > max_age:
                logger.warning(
                    f"Payment {result.payment.id} matched by {result.strategy} "
                    f"but is older than {self.settings.max_age_minutes} min, rejecting"
                )
                return ResolutionResult.miss(
                    REASON_EXPIRED, strategy=result.strategy, payment=result.payment
                )

            logger.info(f"Resolved payment {result.payment.id} via {result.strategy}")
            return result

        return ResolutionResult.miss(REASON_AMBIGUOUS if ambiguous else REASON_NO_PENDING)

    def resolve_by_session(self, session_id, now=None):
        """Session-id only lookup, used by the retry sweep."""
        return self.resolve(
            Criteria(session_id=session_id), now=now, strategies=(by_session_id,)
        )
