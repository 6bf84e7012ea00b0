"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle.db.base import Base
from lifecycle.db.types import JSONType, utcnow

if TYPE_CHECKING:
    from lifecycle.db.models import Contact, FlowRun, Template


class Message(Base):
    """
    Outbound email, either sent or scheduled for a later send.

    Sent messages (sent_at set) feed the optimizer histograms.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_contact", "contact_id"),
        Index("idx_messages_sent_at", "sent_at"),
        Index("idx_messages_scheduled", "status", "scheduled_send_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("templates.id", ondelete="SET NULL"), nullable=True
    )
    flow_run_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("flow_runs.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # 'scheduled' | 'sent' | 'failed'
    external_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduled_send_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_status_check_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    contact: Mapped["Contact"] = relationship()
    template: Mapped["Template | None"] = relationship()
    flow_run: Mapped["FlowRun | None"] = relationship(back_populates="messages")
    outcome: Mapped["MessageOutcome | None"] = relationship(
        back_populates="message", uselist=False, cascade="all, delete-orphan"
    )


class MessageOutcome(Base):
    """Delivery/engagement outcome of a message (one row per message)."""

    __tablename__ = "message_outcomes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    bounced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    complained_at: Mapped[datetime | None] = mapped_column(nullable=True)
    suppressed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_event: Mapped[str | None] = mapped_column(String(30), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    message: Mapped["Message"] = relationship(back_populates="outcome")
