"""Segment definitions, membership recompute and send-time heatmaps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lifecycle.core.constants import HOURS_PER_WEEK
from lifecycle.core.errors import InvalidDefinitionError, NotFoundError
from lifecycle.db.models import Contact, Message, MessageOutcome, Segment, SegmentMembership
from lifecycle.db.types import as_utc, utcnow
from lifecycle.schemas.segment import (
    LastEventWithinDaysFilter,
    SegmentFilter,
    StatusFilter,
    TagFilter,
    TimezoneFilter,
    segment_filters_adapter,
)
from lifecycle.services.histogram_service import hour_of_week

logger = logging.getLogger(__name__)


@dataclass
class HeatmapCell:
    hour: int
    sends: int = 0
    clicks: int = 0
    rate: float = 0.0


@dataclass
class SegmentHeatmap:
    segment_id: UUID
    cells: list[HeatmapCell] = field(default_factory=list)
    best_hour: int | None = None
    best_rate: float = 0.0


def build_segment_definition(filters: Iterable[SegmentFilter | dict[str, Any]]) -> dict[str, Any]:
    """
    Validate and de-duplicate filters into a stored definition.

    Raises InvalidDefinitionError for unknown filter types or bad values.
    """
    raw = [f.model_dump(mode="json") if hasattr(f, "model_dump") else f for f in filters]
    try:
        parsed = segment_filters_adapter.validate_python(raw)
    except ValidationError as exc:
        raise InvalidDefinitionError(f"Invalid segment filters: {exc.error_count()} error(s)") from exc

    deduped: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in parsed:
        data = item.model_dump(mode="json")
        key = f"{data['type']}:{data['value']}"
        if key in seen:
            continue
        seen.add(key)
        deduped.append(data)
    return {"filters": deduped}


def create_segment(
    db: Session,
    name: str,
    filters: Iterable[SegmentFilter | dict[str, Any]] = (),
    description: str | None = None,
) -> Segment:
    name = (name or "").strip()
    if not name:
        raise InvalidDefinitionError("Segment name is required")

    segment = Segment(
        name=name,
        description=description,
        definition=build_segment_definition(filters),
        is_system=False,
    )
    db.add(segment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidDefinitionError(f"Segment '{name}' already exists") from exc
    db.refresh(segment)
    return segment


def get_segment(db: Session, segment_id: UUID) -> Segment:
    segment = db.get(Segment, segment_id)
    if not segment:
        raise NotFoundError(f"Segment {segment_id} not found")
    return segment


def list_segments(db: Session) -> list[Segment]:
    return db.query(Segment).order_by(Segment.created_at.desc()).all()


def _matches(contact: Contact, filters: list[SegmentFilter], now: datetime) -> bool:
    for item in filters:
        if isinstance(item, StatusFilter):
            if contact.status != item.value.value:
                return False
        elif isinstance(item, TagFilter):
            if item.value not in (contact.tags or []):
                return False
        elif isinstance(item, TimezoneFilter):
            if contact.timezone != item.value:
                return False
        elif isinstance(item, LastEventWithinDaysFilter):
            if not contact.last_event_at:
                return False
            if as_utc(contact.last_event_at) < now - timedelta(days=item.value):
                return False
    return True


def recompute_segment_membership(db: Session, segment_id: UUID, now: datetime | None = None) -> int:
    """Rebuild membership rows from the definition. Returns the member count."""
    now = as_utc(now) or utcnow()
    segment = get_segment(db, segment_id)
    try:
        filters = segment_filters_adapter.validate_python((segment.definition or {}).get("filters", []))
    except ValidationError as exc:
        raise InvalidDefinitionError("Segment definition is invalid") from exc

    contacts = db.query(Contact).all()
    matches = [c for c in contacts if _matches(c, filters, now)] if filters else contacts

    db.query(SegmentMembership).filter(SegmentMembership.segment_id == segment.id).delete(
        synchronize_session=False
    )
    db.add_all(SegmentMembership(segment_id=segment.id, contact_id=c.id) for c in matches)
    segment.last_computed_at = now
    segment.estimated_size = len(matches)
    db.commit()

    logger.info("Recomputed segment %s: members=%s", segment.id, len(matches))
    return len(matches)


def is_contact_in_segment(db: Session, segment_id: UUID, contact_id: UUID) -> bool:
    return (
        db.query(SegmentMembership.id)
        .filter(
            SegmentMembership.segment_id == segment_id,
            SegmentMembership.contact_id == contact_id,
        )
        .first()
        is not None
    )


def get_segment_heatmap(db: Session, segment_id: UUID) -> SegmentHeatmap:
    """Sends, clicks and click rate per hour-of-week for segment members."""
    get_segment(db, segment_id)
    member_ids = select(SegmentMembership.contact_id).where(SegmentMembership.segment_id == segment_id)
    rows = db.execute(
        select(Message.sent_at, MessageOutcome.clicked_at)
        .outerjoin(MessageOutcome, MessageOutcome.message_id == Message.id)
        .where(Message.sent_at.is_not(None), Message.contact_id.in_(member_ids))
    ).all()

    heatmap = SegmentHeatmap(
        segment_id=segment_id,
        cells=[HeatmapCell(hour=hour) for hour in range(HOURS_PER_WEEK)],
    )
    for sent_at, clicked_at in rows:
        cell = heatmap.cells[hour_of_week(sent_at)]
        cell.sends += 1
        if clicked_at is not None:
            cell.clicks += 1

    best_rate: float | None = None
    for cell in heatmap.cells:
        if not cell.sends:
            continue
        cell.rate = round(cell.clicks / cell.sends, 4)
        if best_rate is None or cell.rate > best_rate:
            best_rate = cell.rate
            heatmap.best_hour = cell.hour

    heatmap.best_rate = best_rate or 0.0
    return heatmap
