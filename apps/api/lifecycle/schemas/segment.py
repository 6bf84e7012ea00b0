"""Segment schemas for definition validation."""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from lifecycle.db.enums import ContactStatus


class StatusFilter(BaseModel):
    type: Literal["status"]
    value: ContactStatus


class TagFilter(BaseModel):
    type: Literal["tag"]
    value: str = Field(..., min_length=1)


class TimezoneFilter(BaseModel):
    type: Literal["timezone"]
    value: str = Field(..., min_length=1)


class LastEventWithinDaysFilter(BaseModel):
    type: Literal["last_event_within_days"]
    value: int = Field(..., ge=0)


SegmentFilter = Annotated[
    Union[StatusFilter, TagFilter, TimezoneFilter, LastEventWithinDaysFilter],
    Field(discriminator="type"),
]

segment_filters_adapter = TypeAdapter(list[SegmentFilter])


class SegmentCreate(BaseModel):
    """Create a segment from a list of filters (all must match)."""
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    filters: list[SegmentFilter] = Field(default_factory=list)
