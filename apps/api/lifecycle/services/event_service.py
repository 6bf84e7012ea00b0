"""Behavioral event ingestion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from lifecycle.core.errors import NotFoundError
from lifecycle.db.models import Contact, ContactEvent
from lifecycle.db.types import as_utc, utcnow
from lifecycle.services.flow_service import TriggerSummary, trigger_flows_for_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventIngestResult:
    event_id: UUID
    contact_id: UUID
    trigger: TriggerSummary


def resolve_contact(db: Session, contact_id: UUID | None = None, email: str | None = None) -> Contact:
    contact = None
    if contact_id:
        contact = db.get(Contact, contact_id)
    elif email and email.strip():
        contact = (
            db.query(Contact)
            .filter(func.lower(Contact.email) == email.strip().lower())
            .first()
        )
    if not contact:
        raise NotFoundError("Contact not found")
    return contact


def record_contact_event(
    db: Session,
    *,
    event_name: str,
    contact_id: UUID | None = None,
    contact_email: str | None = None,
    external_user_id: str | None = None,
    occurred_at: datetime | None = None,
    properties: dict[str, Any] | None = None,
) -> EventIngestResult:
    """
    Store an event, bump the contact's last_event_at and trigger flows.

    last_event_at never moves backwards for out-of-order events.
    """
    occurred_at = as_utc(occurred_at) or utcnow()
    contact = resolve_contact(db, contact_id, contact_email)

    event = ContactEvent(
        contact_id=contact.id,
        event_name=event_name,
        external_user_id=external_user_id,
        properties=properties,
        occurred_at=occurred_at,
    )
    db.add(event)
    if contact.last_event_at is None or occurred_at > contact.last_event_at:
        contact.last_event_at = occurred_at
    db.flush()

    trigger = trigger_flows_for_event(
        db,
        contact.id,
        event_name,
        event_id=event.id,
        properties=properties,
        occurred_at=occurred_at,
        commit=False,
    )
    db.commit()

    logger.info(
        "Event recorded: event=%s event_id=%s runs_created=%s",
        event_name,
        event.id,
        trigger.created_runs,
    )
    return EventIngestResult(event_id=event.id, contact_id=contact.id, trigger=trigger)
