"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle.db.base import Base
from lifecycle.db.enums import FlowRunStatus, FlowStatus
from lifecycle.db.types import JSONType, utcnow

if TYPE_CHECKING:
    from lifecycle.db.models import Contact, Message, Segment, Template


class Flow(Base):
    """
    Automation definition.

    A flow is triggered by a named behavioral event and walks each
    contact through its ordered steps (delay, segment filter, send).
    """

    __tablename__ = "flows"
    __table_args__ = (
        Index("idx_flows_trigger", "status", "trigger_event_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=FlowStatus.DRAFT.value, nullable=False
    )  # 'draft' | 'active' | 'paused'
    trigger_event_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Fallbacks for steps whose config omits the value
    delay_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    segment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("segments.id", ondelete="SET NULL"), nullable=True
    )
    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("templates.id", ondelete="RESTRICT"), nullable=False
    )
    use_optimizer: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    template: Mapped["Template"] = relationship()
    segment: Mapped["Segment | None"] = relationship()
    steps: Mapped[list["FlowStep"]] = relationship(
        back_populates="flow",
        cascade="all, delete-orphan",
        order_by="FlowStep.order",
    )
    runs: Mapped[list["FlowRun"]] = relationship(
        back_populates="flow", cascade="all, delete-orphan"
    )


class FlowStep(Base):
    """
    Immutable node of a flow.

    Orders are 1-based and may have gaps; the next step is the smallest
    order strictly greater than the current pointer.
    """

    __tablename__ = "flow_steps"
    __table_args__ = (
        UniqueConstraint("flow_id", "step_order", name="uq_flow_step_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    flow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("flows.id", ondelete="CASCADE"), nullable=False
    )
    order: Mapped[int] = mapped_column("step_order", Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    # {event_name} | {minutes} | {segment_id} | {template_id}
    config: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    flow: Mapped["Flow"] = relationship(back_populates="steps")


class FlowRun(Base):
    """
    One contact's walk through a flow, created per trigger event.

    Mutated only by the scheduler tick. COMPLETED, CANCELLED and FAILED
    are terminal and never re-entered.
    """

    __tablename__ = "flow_runs"
    __table_args__ = (
        Index("idx_flow_runs_due", "status", "scheduled_at"),
        Index("idx_flow_runs_flow", "flow_id", "created_at"),
        Index("idx_flow_runs_contact", "contact_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    flow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("flows.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20), default=FlowRunStatus.PENDING.value, nullable=False
    )
    next_step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # {event_id, event_name, triggered_at, properties}
    context: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    flow: Mapped["Flow"] = relationship(back_populates="runs")
    contact: Mapped["Contact"] = relationship()
    messages: Mapped[list["Message"]] = relationship(back_populates="flow_run")
