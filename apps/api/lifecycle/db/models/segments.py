"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle.db.base import Base
from lifecycle.db.types import JSONType, utcnow


class Segment(Base):
    """
    Named audience slice.

    Membership rows are rebuilt from the definition by
    segment_service.recompute_segment_membership.
    """

    __tablename__ = "segments"
    __table_args__ = (
        UniqueConstraint("name", name="uq_segment_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    definition: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)  # {filters: [...]}
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    estimated_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_computed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    memberships: Mapped[list["SegmentMembership"]] = relationship(
        back_populates="segment", cascade="all, delete-orphan"
    )


class SegmentMembership(Base):
    """Point-lookup row: contact belongs to segment."""

    __tablename__ = "segment_memberships"
    __table_args__ = (
        UniqueConstraint("segment_id", "contact_id", name="uq_segment_membership"),
        Index("idx_segment_memberships_contact", "contact_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    segment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("segments.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    segment: Mapped["Segment"] = relationship(back_populates="memberships")
