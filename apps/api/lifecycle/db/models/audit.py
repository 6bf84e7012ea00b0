"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle.db.base import Base
from lifecycle.db.types import JSONType, utcnow

if TYPE_CHECKING:
    from lifecycle.db.models import Contact


class OptimizerDecision(Base):
    """
    Immutable audit record of one send-time recommendation.

    Written once per recommend call and never updated.
    """

    __tablename__ = "optimizer_decisions"
    __table_args__ = (
        Index("idx_optimizer_decisions_contact", "contact_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    recommended_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    baseline_score: Mapped[float] = mapped_column(Float, nullable=False)
    # {segment, used_segment_histogram, generated_at, throttled, recommended_at}
    rationale: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    contact: Mapped["Contact"] = relationship()


class HygieneEvaluation(Base):
    """Immutable audit record of one hygiene scoring pass over a contact."""

    __tablename__ = "hygiene_evaluations"
    __table_args__ = (
        Index("idx_hygiene_evaluations_contact", "contact_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    risk_level: Mapped[str] = mapped_column(String(10), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    suppressed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reasons: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)  # {reasons: [...]}
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Suppression(Base):
    """
    Append-only ledger entry: why and when a contact was excluded from sending.

    Several rows per contact are allowed (different reasons/sources).
    """

    __tablename__ = "suppressions"
    __table_args__ = (
        Index("idx_suppressions_contact_reason", "contact_id", "reason"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # 'system' | 'webhook' | 'operator'
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    contact: Mapped["Contact"] = relationship(back_populates="suppressions")
