"""Send-time optimizer.

Picks the hour-of-week with the best smoothed click rate for a contact
(segment histogram when it has data, else global), turns it into a
concrete instant in the contact's timezone and applies the 24h send
cooldown. Every recommendation for an active contact is audited as an
OptimizerDecision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session, selectinload

from lifecycle.core.constants import HOURS_PER_DAY, HOURS_PER_WEEK, SEND_COOLDOWN
from lifecycle.core.errors import NotFoundError
from lifecycle.db.enums import ContactStatus
from lifecycle.db.models import Contact, OptimizerDecision
from lifecycle.db.types import as_utc, utcnow
from lifecycle.services import histogram_service
from lifecycle.services.histogram_service import Histogram, HistogramCache

logger = logging.getLogger(__name__)

INACTIVE_REASON = "Contact not active"
THROTTLED_SUFFIX = "throttled 24h cooldown"
DEFAULT_DECISION_LIMIT = 20
MAX_DECISION_LIMIT = 100


@dataclass(frozen=True)
class Recommendation:
    hour: int | None
    send_at: datetime | None
    score: float
    baseline_score: float
    reason: str
    throttled: bool
    segment: str | None = None


@dataclass(frozen=True)
class HourChoice:
    hour: int
    score: float
    baseline_score: float


def pick_best_hour(histogram: Histogram, baseline: Histogram) -> HourChoice:
    """Best hour on `histogram`, with the same hour re-scored on `baseline`."""
    prior = histogram_service.compute_prior(histogram)
    hour, score = histogram_service.pick_best(
        histogram_service.score_hour(h, histogram, prior) for h in range(HOURS_PER_WEEK)
    )
    baseline_prior = histogram_service.compute_prior(baseline)
    baseline_score = histogram_service.score_hour(hour, baseline, baseline_prior)
    return HourChoice(hour=hour, score=score, baseline_score=baseline_score)


def _resolve_zone(tz_name: str | None) -> ZoneInfo | timezone:
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown contact timezone %r, falling back to UTC", tz_name)
        return timezone.utc


def next_send_instant(reference: datetime, hour_of_week: int, tz_name: str | None = None) -> datetime:
    """
    Next occurrence of `hour_of_week` strictly after `reference`.

    The weekday/hour are read as wall-clock time in `tz_name` (UTC when
    unset or unknown). Returns an aware UTC datetime.
    """
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    zone = _resolve_zone(tz_name)
    local = reference.astimezone(zone)

    target_day, target_hour = divmod(hour_of_week, HOURS_PER_DAY)
    local_day = (local.weekday() + 1) % 7  # Sunday = 0
    day_offset = (target_day - local_day) % 7

    candidate_date = local.date() + timedelta(days=day_offset)
    candidate = datetime.combine(candidate_date, time(hour=target_hour), tzinfo=zone)
    if candidate.astimezone(timezone.utc) <= reference.astimezone(timezone.utc):
        candidate = datetime.combine(candidate_date + timedelta(days=7), time(hour=target_hour), tzinfo=zone)
    return candidate.astimezone(timezone.utc)


def recommend_send_time(
    db: Session,
    contact_id: UUID,
    reference_time: datetime | None = None,
    *,
    cache: HistogramCache | None = None,
) -> Recommendation:
    """
    Recommend when to message a contact.

    Raises NotFoundError for unknown contacts. Inactive contacts get an
    empty recommendation and nothing is recorded.
    """
    reference = as_utc(reference_time) or utcnow()
    contact = db.get(Contact, contact_id)
    if not contact:
        raise NotFoundError(f"Contact {contact_id} not found")

    if contact.status != ContactStatus.ACTIVE.value:
        return Recommendation(
            hour=None,
            send_at=None,
            score=0.0,
            baseline_score=0.0,
            reason=INACTIVE_REASON,
            throttled=False,
        )

    histograms = (cache or histogram_service.histogram_cache).get(db)
    segment = histogram_service.segment_from_tags(contact.tags)
    segment_histogram = histograms.segment(segment)
    used_segment_histogram = bool(segment_histogram and segment_histogram.has_sends)
    histogram = segment_histogram if used_segment_histogram else histograms.global_histogram

    choice = pick_best_hour(histogram, histograms.global_histogram)
    send_at = next_send_instant(reference, choice.hour, contact.timezone)

    throttled = False
    if contact.last_message_sent_at:
        earliest = as_utc(contact.last_message_sent_at) + SEND_COOLDOWN
        if reference < earliest:
            throttled = True
        if send_at < earliest:
            send_at = next_send_instant(earliest, choice.hour, contact.timezone)

    reason = f"Segment-based recommendation ({segment})" if segment else "Global recommendation"
    if throttled:
        reason = f"{reason}; {THROTTLED_SUFFIX}"

    db.add(
        OptimizerDecision(
            contact_id=contact.id,
            recommended_hour=choice.hour,
            score=choice.score,
            baseline_score=choice.baseline_score,
            rationale={
                "segment": segment or "global",
                "used_segment_histogram": used_segment_histogram,
                "generated_at": reference.isoformat(),
                "throttled": throttled,
                "recommended_at": send_at.isoformat() if send_at else None,
            },
        )
    )
    db.flush()

    return Recommendation(
        hour=choice.hour,
        send_at=send_at,
        score=choice.score,
        baseline_score=choice.baseline_score,
        reason=reason,
        throttled=throttled,
        segment=segment,
    )


def try_recommend_send_time(
    db: Session,
    contact_id: UUID,
    reference_time: datetime | None = None,
    *,
    cache: HistogramCache | None = None,
) -> tuple[Recommendation | None, str | None]:
    """
    Recommendation that never raises.

    Runs inside a savepoint so a failed decision write leaves the caller's
    transaction usable. Returns (recommendation, None) on success or
    (None, error) on failure.
    """
    try:
        with db.begin_nested():
            recommendation = recommend_send_time(db, contact_id, reference_time, cache=cache)
        return recommendation, None
    except Exception as exc:
        logger.warning("Send-time recommendation failed: %s", exc.__class__.__name__)
        return None, str(exc) or exc.__class__.__name__


def list_decisions(
    db: Session,
    contact_id: UUID | None = None,
    limit: int = DEFAULT_DECISION_LIMIT,
) -> list[OptimizerDecision]:
    """Most recent optimizer decisions, newest first. `limit` is clamped to 1..100."""
    limit = min(max(limit, 1), MAX_DECISION_LIMIT)
    query = db.query(OptimizerDecision).options(selectinload(OptimizerDecision.contact))
    if contact_id:
        query = query.filter(OptimizerDecision.contact_id == contact_id)
    return query.order_by(OptimizerDecision.created_at.desc()).limit(limit).all()
