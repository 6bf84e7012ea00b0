"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Float, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle.db.base import Base
from lifecycle.db.enums import ContactStatus
from lifecycle.db.types import JSONType, utcnow

if TYPE_CHECKING:
    from lifecycle.db.models import Suppression


class Contact(Base):
    """
    A person the lifecycle engine can message.

    Mutated by event ingestion (last_event_at), send execution
    (last_message_sent_at) and the hygiene sweep (risk fields, status).
    """

    __tablename__ = "contacts"
    __table_args__ = (
        Index("idx_contacts_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ContactStatus.ACTIVE.value, nullable=False
    )  # 'active' | 'bounced' | 'complained' | 'suppressed'

    # Free-form tags, e.g. "segment=trial", "synthetic", "outcome=bounced"
    tags: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)  # IANA name
    lifecycle_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Engagement prior in [0, 1]
    propensity: Mapped[float | None] = mapped_column(Float, nullable=True)

    last_event_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_message_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Derived by the hygiene sweep
    hygiene_risk_level: Mapped[str | None] = mapped_column(String(10), nullable=True)
    hygiene_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    suppressions: Mapped[list["Suppression"]] = relationship(
        back_populates="contact", cascade="all, delete-orphan"
    )
    events: Mapped[list["ContactEvent"]] = relationship(
        back_populates="contact", cascade="all, delete-orphan"
    )


class ContactEvent(Base):
    """Behavioral event recorded for a contact (flow trigger source)."""

    __tablename__ = "contact_events"
    __table_args__ = (
        Index("idx_contact_events_contact", "contact_id", "occurred_at"),
        Index("idx_contact_events_name", "event_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    event_name: Mapped[str] = mapped_column(String(200), nullable=False)
    external_user_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    properties: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    contact: Mapped["Contact"] = relationship(back_populates="events")


class Template(Base):
    """Email template referenced by flows."""

    __tablename__ = "templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    html: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
