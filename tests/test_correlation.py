"""Tests for the payment correlation strategy chain.

Covers:
- Strategy priority (tracking id > session id > email > time window)
- Email strategy picks the most recent match, ignores stale ones
- Time-window fallback only runs when no identifier was supplied, and
  refuses to guess between two payments
- Matches older than the max age are rejected as payment_expired
- Expired / non-pending payments are invisible to every strategy
"""

from datetime import timedelta

from app.models.pending_payment import PendingPayment
from app.services.correlation import (
    REASON_AMBIGUOUS,
    REASON_EXPIRED,
    REASON_NO_PENDING,
    STRATEGY_EMAIL,
    STRATEGY_SESSION_ID,
    STRATEGY_TIME_WINDOW,
    STRATEGY_TRACKING_ID,
    Criteria,
    ResolverSettings,
)
from app.utils import utcnow


class TestStrategyOrder:

    def test_tracking_id_wins_over_everything(self, recon, make_payment):
        by_tracking = make_payment(tracking_id="trk_1", customer_email="a@b.nl")
        make_payment(stripe_session_id="cs_other", customer_email="a@b.nl", minutes_ago=1)

        result = recon.resolver.resolve(Criteria(
            tracking_id="trk_1", session_id="cs_other", email="a@b.nl",
        ))
        assert result.found
        assert result.strategy == STRATEGY_TRACKING_ID
        assert result.payment.id == by_tracking.id

    def test_session_id_used_when_tracking_unknown(self, recon, make_payment):
        payment = make_payment(stripe_session_id="cs_live_1")

        result = recon.resolver.resolve(Criteria(tracking_id="nope", session_id="cs_live_1"))
        assert result.strategy == STRATEGY_SESSION_ID
        assert result.payment.id == payment.id

    def test_email_is_case_insensitive(self, recon, make_payment):
        payment = make_payment(customer_email="bestuur@alfath.nl", minutes_ago=20)

        result = recon.resolver.resolve(Criteria(email="Bestuur@AlFath.nl"))
        assert result.strategy == STRATEGY_EMAIL
        assert result.payment.id == payment.id

    def test_no_payments_at_all(self, recon):
        result = recon.resolver.resolve(Criteria(email="x@y.nl"))
        assert not result.found
        assert result.reason == REASON_NO_PENDING


class TestEmailStrategy:

    def test_most_recent_of_several(self, recon, make_payment):
        make_payment(customer_email="dup@moskee.nl", minutes_ago=25)
        newest = make_payment(customer_email="dup@moskee.nl", minutes_ago=15)

        result = recon.resolver.resolve(Criteria(email="dup@moskee.nl"))
        assert result.strategy == STRATEGY_EMAIL
        assert result.payment.id == newest.id

    def test_outside_email_window_falls_through(self, recon, make_payment):
        make_payment(customer_email="late@moskee.nl", minutes_ago=45)

        result = recon.resolver.resolve(Criteria(email="late@moskee.nl"))
        assert not result.found
        assert result.reason == REASON_NO_PENDING


class TestTimeWindow:

    def test_single_recent_payment_matches(self, recon, make_payment):
        payment = make_payment(customer_email="other@x.nl", minutes_ago=3)

        result = recon.resolver.resolve(Criteria())
        assert result.found
        assert result.strategy == STRATEGY_TIME_WINDOW
        assert result.payment.id == payment.id

    def test_two_recent_payments_are_ambiguous(self, recon, make_payment):
        make_payment(minutes_ago=2)
        make_payment(minutes_ago=4)

        result = recon.resolver.resolve(Criteria())
        assert not result.found
        assert result.reason == REASON_AMBIGUOUS

    def test_payment_outside_window_ignored(self, recon, make_payment):
        make_payment(minutes_ago=12)

        result = recon.resolver.resolve(Criteria())
        assert result.reason == REASON_NO_PENDING

    def test_email_miss_does_not_fall_back_to_window(self, recon, make_payment):
        stranger = make_payment(customer_email="stranger@other.nl", minutes_ago=3)

        result = recon.resolver.resolve(Criteria(email="registrant@x.nl"))
        assert not result.found
        assert result.reason == REASON_NO_PENDING
        assert stranger.status == PendingPayment.PENDING

    def test_unmatched_tracking_id_does_not_fall_back_to_window(self, recon, make_payment):
        make_payment(minutes_ago=2)

        result = recon.resolver.resolve(Criteria(tracking_id="trk_unknown"))
        assert not result.found
        assert result.reason == REASON_NO_PENDING


class TestExpiry:

    def test_old_tracking_match_is_rejected(self, recon, make_payment):
        payment = make_payment(tracking_id="trk_old", minutes_ago=90)

        result = recon.resolver.resolve(Criteria(tracking_id="trk_old"))
        assert not result.found
        assert result.reason == REASON_EXPIRED
        assert result.strategy == STRATEGY_TRACKING_ID
        assert result.payment.id == payment.id

    def test_past_expires_at_is_invisible(self, recon, make_payment):
        make_payment(
            tracking_id="trk_gone",
            minutes_ago=10,
            expires_at=utcnow() - timedelta(minutes=1),
        )

        result = recon.resolver.resolve(Criteria(tracking_id="trk_gone"))
        assert not result.found
        assert result.reason == REASON_NO_PENDING

    def test_linked_payment_is_invisible(self, recon, make_payment):
        make_payment(tracking_id="trk_done", status=PendingPayment.LINKED)

        result = recon.resolver.resolve(Criteria(tracking_id="trk_done"))
        assert not result.found

    def test_max_age_is_configurable(self, recon, make_payment):
        make_payment(tracking_id="trk_20", minutes_ago=20)
        recon.resolver.settings = ResolverSettings(max_age_minutes=15)

        result = recon.resolver.resolve(Criteria(tracking_id="trk_20"))
        assert result.reason == REASON_EXPIRED


class TestResolveBySession:

    def test_only_session_strategy_runs(self, recon, make_payment):
        # The retry sweep must not pick up a lone recent payment for an
        # unrelated session id.
        make_payment(stripe_session_id="cs_unrelated", minutes_ago=1)

        result = recon.resolver.resolve_by_session("cs_missing")
        assert not result.found

    def test_matches_session(self, recon, make_payment):
        payment = make_payment(stripe_session_id="cs_retry")

        result = recon.resolver.resolve_by_session("cs_retry")
        assert result.found
        assert result.payment.id == payment.id
