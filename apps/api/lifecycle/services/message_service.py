"""Message records and their delivery/engagement outcomes."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from lifecycle.core.errors import NotFoundError
from lifecycle.db.enums import MessageStatus
from lifecycle.db.models import Message, MessageOutcome
from lifecycle.services.histogram_service import reset_optimizer_cache

logger = logging.getLogger(__name__)

OUTCOME_FIELDS = frozenset(
    {
        "delivered_at",
        "bounced_at",
        "failed_at",
        "complained_at",
        "suppressed_at",
        "clicked_at",
        "last_event",
        "details",
    }
)


def create_message(
    db: Session,
    *,
    contact_id: UUID,
    status: MessageStatus,
    template_id: UUID | None = None,
    flow_run_id: UUID | None = None,
    external_message_id: str | None = None,
    scheduled_send_at: datetime | None = None,
    sent_at: datetime | None = None,
) -> Message:
    """Add a message to the session (flushed, not committed)."""
    message = Message(
        contact_id=contact_id,
        template_id=template_id,
        flow_run_id=flow_run_id,
        status=status.value,
        external_message_id=external_message_id,
        scheduled_send_at=scheduled_send_at,
        sent_at=sent_at,
    )
    db.add(message)
    db.flush()
    return message


def upsert_message_outcome(
    db: Session,
    message_id: UUID,
    *,
    invalidate_cache: bool = False,
    commit: bool = True,
    **fields,
) -> MessageOutcome:
    """
    Create or update the single outcome row of a message.

    Only known outcome columns are accepted. Pass invalidate_cache=True
    when the write must be visible to the next recommendation, and
    commit=False to flush into the caller's transaction instead.
    """
    unknown = set(fields) - OUTCOME_FIELDS
    if unknown:
        raise ValueError(f"Unknown outcome fields: {', '.join(sorted(unknown))}")

    message = db.get(Message, message_id)
    if not message:
        raise NotFoundError(f"Message {message_id} not found")

    outcome = message.outcome
    if outcome is None:
        outcome = MessageOutcome(message_id=message.id)
        message.outcome = outcome
        db.add(outcome)

    for key, value in fields.items():
        setattr(outcome, key, value)

    if commit:
        db.commit()
        db.refresh(outcome)
    else:
        db.flush()

    if invalidate_cache:
        reset_optimizer_cache()
    return outcome


def record_click(
    db: Session,
    message_id: UUID,
    clicked_at: datetime,
    *,
    invalidate_cache: bool = True,
) -> MessageOutcome:
    """Record a click; the first click timestamp is kept."""
    message = db.get(Message, message_id)
    if not message:
        raise NotFoundError(f"Message {message_id} not found")
    if message.outcome and message.outcome.clicked_at:
        return message.outcome
    return upsert_message_outcome(
        db,
        message_id,
        invalidate_cache=invalidate_cache,
        clicked_at=clicked_at,
        last_event="clicked",
    )


def list_scheduled_messages(db: Session, due_before: datetime | None = None) -> list[Message]:
    query = db.query(Message).filter(Message.status == MessageStatus.SCHEDULED.value)
    if due_before is not None:
        query = query.filter(Message.scheduled_send_at <= due_before)
    return query.order_by(Message.scheduled_send_at.asc()).all()
