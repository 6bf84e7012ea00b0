"""Click/send histograms bucketed by hour-of-week.

Histograms are rebuilt from every sent message (joined to its outcome)
and cached process-wide for a short TTL. Callers that write messages or
outcomes and need fresh recommendations immediately must call
`histogram_cache.invalidate()`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from lifecycle.core.config import settings
from lifecycle.core.constants import DEFAULT_PRIOR, HOURS_PER_DAY, HOURS_PER_WEEK, SEGMENT_TAG_PREFIX, SMOOTHING_ALPHA
from lifecycle.db.models import Contact, Message, MessageOutcome

logger = logging.getLogger(__name__)


def _empty_buckets() -> list[int]:
    return [0] * HOURS_PER_WEEK


@dataclass
class Histogram:
    sends: list[int] = field(default_factory=_empty_buckets)
    clicks: list[int] = field(default_factory=_empty_buckets)

    def record(self, hour: int, clicked: bool) -> None:
        self.sends[hour] += 1
        if clicked:
            self.clicks[hour] += 1

    @property
    def total_sends(self) -> int:
        return sum(self.sends)

    @property
    def total_clicks(self) -> int:
        return sum(self.clicks)

    @property
    def has_sends(self) -> bool:
        return any(self.sends)


@dataclass
class HistogramSet:
    global_histogram: Histogram = field(default_factory=Histogram)
    segments: dict[str, Histogram] = field(default_factory=dict)

    def segment(self, name: str | None) -> Histogram | None:
        if not name:
            return None
        return self.segments.get(name)


def hour_of_week(moment: datetime) -> int:
    """UTC weekday (Sunday = 0) * 24 + UTC hour."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    return ((utc.weekday() + 1) % 7) * HOURS_PER_DAY + utc.hour


def segment_from_tags(tags: Iterable[str] | None) -> str | None:
    """Return the value of the first `segment=<name>` tag."""
    for tag in tags or ():
        if tag.startswith(SEGMENT_TAG_PREFIX):
            return tag[len(SEGMENT_TAG_PREFIX):] or None
    return None


def compute_prior(histogram: Histogram) -> float:
    total_sends = histogram.total_sends
    if not total_sends:
        return DEFAULT_PRIOR
    return histogram.total_clicks / total_sends


def score_hour(hour: int, histogram: Histogram, prior: float, alpha: float = SMOOTHING_ALPHA) -> float:
    """Additive smoothing: (clicks + alpha * prior) / (sends + alpha)."""
    return (histogram.clicks[hour] + alpha * prior) / (histogram.sends[hour] + alpha)


def pick_best(scores: Iterable[float]) -> tuple[int, float]:
    """Index and value of the strictly greatest score; ties keep the first."""
    best_index = 0
    best_score = float("-inf")
    for index, score in enumerate(scores):
        if score > best_score:
            best_index = index
            best_score = score
    return best_index, best_score


def build_histograms(db: Session) -> HistogramSet:
    rows = db.execute(
        select(Message.sent_at, Contact.tags, MessageOutcome.clicked_at)
        .join(Contact, Message.contact_id == Contact.id)
        .outerjoin(MessageOutcome, MessageOutcome.message_id == Message.id)
        .where(Message.sent_at.is_not(None))
    ).all()

    histograms = HistogramSet()
    for sent_at, tags, clicked_at in rows:
        hour = hour_of_week(sent_at)
        clicked = clicked_at is not None
        histograms.global_histogram.record(hour, clicked)

        segment = segment_from_tags(tags)
        if segment:
            histograms.segments.setdefault(segment, Histogram()).record(hour, clicked)

    logger.debug(
        "Rebuilt send-time histograms: messages=%s segments=%s",
        len(rows),
        len(histograms.segments),
    )
    return histograms


class HistogramCache:
    """TTL cache around build_histograms with an explicit invalidation hook."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        builder: Callable[[Session], HistogramSet] = build_histograms,
    ) -> None:
        self.ttl_seconds = settings.OPTIMIZER_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self.builder = builder
        self._data: HistogramSet | None = None
        self._fetched_at: float | None = None

    def get(self, db: Session) -> HistogramSet:
        now = self.clock()
        if (
            self._data is not None
            and self._fetched_at is not None
            and now - self._fetched_at < self.ttl_seconds
        ):
            return self._data

        self._data = self.builder(db)
        self._fetched_at = now
        return self._data

    def invalidate(self) -> None:
        self._data = None
        self._fetched_at = None


histogram_cache = HistogramCache()


def reset_optimizer_cache() -> None:
    """Drop cached histograms so the next recommendation rebuilds them."""
    histogram_cache.invalidate()
