"""Tests for the send-time optimizer."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from lifecycle.core.errors import NotFoundError
from lifecycle.db.enums import ContactStatus
from lifecycle.db.models import Contact, OptimizerDecision
from lifecycle.services.histogram_service import Histogram
from lifecycle.services.optimizer_service import (
    next_send_instant,
    pick_best_hour,
    recommend_send_time,
    try_recommend_send_time,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# next_send_instant
# =============================================================================

class TestNextSendInstant:
    def test_later_same_day(self, now):
        # Wednesday 16:00 UTC
        assert next_send_instant(now, 3 * 24 + 16) == utc(2024, 3, 6, 16)

    def test_same_instant_rolls_to_next_week(self, now):
        assert next_send_instant(now, 3 * 24 + 15) == utc(2024, 3, 13, 15)

    def test_earlier_weekday_wraps(self, now):
        assert next_send_instant(now, 0) == utc(2024, 3, 10, 0)

    def test_contact_timezone_wall_clock(self, now):
        # 15:00 UTC is 10:00 in New York (EST); Wednesday 12:00 local = 17:00 UTC
        result = next_send_instant(now, 3 * 24 + 12, "America/New_York")
        assert result == utc(2024, 3, 6, 17)

    def test_unknown_timezone_falls_back_to_utc(self, now):
        assert next_send_instant(now, 3 * 24 + 16, "Mars/Olympus_Mons") == utc(2024, 3, 6, 16)

    def test_naive_reference_is_utc(self):
        assert next_send_instant(datetime(2024, 3, 6, 15), 3 * 24 + 16) == utc(2024, 3, 6, 16)


# =============================================================================
# pick_best_hour
# =============================================================================

def test_empty_histogram_picks_first_hour_at_default_prior():
    choice = pick_best_hour(Histogram(), Histogram())
    assert choice.hour == 0
    assert choice.score == pytest.approx(0.05)
    assert choice.baseline_score == pytest.approx(0.05)


def test_baseline_is_scored_against_global_histogram():
    segment = Histogram()
    segment.record(10, clicked=True)
    segment.record(11, clicked=False)
    overall = Histogram()
    overall.record(10, clicked=False)
    overall.record(10, clicked=False)

    choice = pick_best_hour(segment, overall)

    assert choice.hour == 10
    assert choice.score == pytest.approx((1 + 5 * 0.5) / (1 + 5))
    # Global prior is 0: no clicks anywhere
    assert choice.baseline_score == pytest.approx(0.0)


# =============================================================================
# recommend_send_time
# =============================================================================

def test_recommend_without_history_uses_global(db, make_contact, now):
    contact = make_contact()

    recommendation = recommend_send_time(db, contact.id, now)

    assert recommendation.hour == 0
    assert recommendation.send_at == utc(2024, 3, 10, 0)
    assert recommendation.throttled is False
    assert recommendation.reason == "Global recommendation"

    decision = db.query(OptimizerDecision).one()
    assert decision.contact_id == contact.id
    assert decision.recommended_hour == 0
    assert decision.rationale["segment"] == "global"
    assert decision.rationale["used_segment_histogram"] is False
    assert decision.rationale["recommended_at"] == utc(2024, 3, 10, 0).isoformat()


def test_recommend_prefers_segment_histogram(db, make_contact, make_sent_message, now):
    trial = make_contact(tags=["segment=trial"])
    other = make_contact()
    # Tuesday 10:00 and 11:00 UTC = hours 58 and 59
    make_sent_message(trial, utc(2024, 3, 5, 10), clicked=True)
    make_sent_message(trial, utc(2024, 3, 5, 11))
    make_sent_message(other, utc(2024, 3, 5, 10))

    target = make_contact(tags=["vip", "segment=trial"])
    recommendation = recommend_send_time(db, target.id, now)

    assert recommendation.hour == 58
    assert recommendation.segment == "trial"
    assert recommendation.send_at == utc(2024, 3, 12, 10)
    assert recommendation.score == pytest.approx(3.5 / 6)
    # Global: prior 1/3, hour 58 has 2 sends and 1 click
    assert recommendation.baseline_score == pytest.approx((1 + 5 / 3) / 7)
    assert recommendation.reason == "Segment-based recommendation (trial)"

    decision = db.query(OptimizerDecision).one()
    assert decision.rationale["segment"] == "trial"
    assert decision.rationale["used_segment_histogram"] is True


def test_segment_without_sends_falls_back_to_global(db, make_contact, make_sent_message, now):
    sender = make_contact()
    make_sent_message(sender, utc(2024, 3, 5, 10), clicked=True)
    make_sent_message(sender, utc(2024, 3, 5, 11))

    target = make_contact(tags=["segment=fresh"])
    recommendation = recommend_send_time(db, target.id, now)

    assert recommendation.hour == 58
    decision = db.query(OptimizerDecision).one()
    assert decision.rationale["segment"] == "fresh"
    assert decision.rationale["used_segment_histogram"] is False


def test_recent_send_throttles_and_respects_cooldown(db, make_contact, now):
    last_sent = now - timedelta(hours=1)
    contact = make_contact(last_message_sent_at=last_sent)

    recommendation = recommend_send_time(db, contact.id, now)

    assert recommendation.throttled is True
    assert recommendation.send_at >= last_sent + timedelta(hours=24)
    assert recommendation.reason.endswith("throttled 24h cooldown")


def test_cooldown_pushes_same_hour_to_following_week(db, make_contact, make_sent_message, now):
    sender = make_contact()
    # Wednesday 16:00 / 17:00 UTC = hours 88 and 89
    make_sent_message(sender, utc(2024, 2, 28, 16), clicked=True)
    make_sent_message(sender, utc(2024, 2, 28, 17))

    contact = make_contact(last_message_sent_at=now - timedelta(hours=1))
    recommendation = recommend_send_time(db, contact.id, now)

    # Today's 16:00 falls inside the cooldown; the hour-of-week is kept
    assert recommendation.hour == 88
    assert recommendation.send_at == utc(2024, 3, 13, 16)
    assert recommendation.throttled is True


def test_old_send_is_not_throttled(db, make_contact, now):
    contact = make_contact(last_message_sent_at=now - timedelta(days=3))

    recommendation = recommend_send_time(db, contact.id, now)

    assert recommendation.throttled is False


def test_inactive_contact_gets_empty_recommendation(db, make_contact, now):
    contact = make_contact(status=ContactStatus.BOUNCED.value)

    recommendation = recommend_send_time(db, contact.id, now)

    assert recommendation.hour is None
    assert recommendation.send_at is None
    assert recommendation.score == 0
    assert recommendation.reason == "Contact not active"
    assert db.query(OptimizerDecision).count() == 0


def test_unknown_contact_raises(db, now):
    with pytest.raises(NotFoundError):
        recommend_send_time(db, uuid.uuid4(), now)


def test_try_recommend_returns_error_instead_of_raising(db, now):
    recommendation, error = try_recommend_send_time(db, uuid.uuid4(), now)

    assert recommendation is None
    assert "not found" in error


def test_failed_decision_write_leaves_session_usable(db, make_contact, now):
    db.execute(
        text(
            "CREATE TRIGGER reject_decisions BEFORE INSERT ON optimizer_decisions "
            "BEGIN SELECT RAISE(ABORT, 'decision store unavailable'); END"
        )
    )
    db.commit()
    contact = make_contact()

    recommendation, error = try_recommend_send_time(db, contact.id, now)

    assert recommendation is None
    assert "decision store unavailable" in error
    contact.last_message_sent_at = now
    db.commit()
    assert db.query(Contact).one().last_message_sent_at == now
