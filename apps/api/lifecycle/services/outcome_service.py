"""Delivery outcomes reported by the mail provider.

Provider events (webhook relays) and the status poll both land here. A
non-delivered outcome marks the message FAILED; bounces, complaints and
provider suppressions also move the contact out of ACTIVE, and bounces
and suppressions are written to the suppression ledger with source
`webhook`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session, selectinload

from lifecycle.core.constants import (
    OUTCOME_POLL_BATCH_SIZE,
    OUTCOME_POLL_WINDOW,
    OUTCOME_TAG_PREFIX,
)
from lifecycle.core.structured_logging import build_log_context
from lifecycle.db.enums import ContactStatus, MessageOutcomeType, MessageStatus, SuppressionSource
from lifecycle.db.models import Contact, Message
from lifecycle.db.types import as_utc, utcnow
from lifecycle.services import message_service, suppression_service

logger = logging.getLogger(__name__)

MESSAGE_ID_KEYS = ("id", "message_id", "email_id", "resend_id")

# Substring of the provider event type -> outcome, checked in order
_EVENT_TYPE_RULES: tuple[tuple[tuple[str, ...], MessageOutcomeType], ...] = (
    (("delivered",), MessageOutcomeType.DELIVERED),
    (("bounced",), MessageOutcomeType.BOUNCED),
    (("complaint", "complained"), MessageOutcomeType.COMPLAINED),
    (("suppressed",), MessageOutcomeType.SUPPRESSED),
    (("failed",), MessageOutcomeType.FAILED),
)

_CONTACT_STATUS_BY_OUTCOME = {
    MessageOutcomeType.BOUNCED: ContactStatus.BOUNCED,
    MessageOutcomeType.COMPLAINED: ContactStatus.COMPLAINED,
    MessageOutcomeType.SUPPRESSED: ContactStatus.SUPPRESSED,
}

_TIMESTAMP_FIELD_BY_OUTCOME = {
    MessageOutcomeType.DELIVERED: "delivered_at",
    MessageOutcomeType.BOUNCED: "bounced_at",
    MessageOutcomeType.FAILED: "failed_at",
    MessageOutcomeType.COMPLAINED: "complained_at",
    MessageOutcomeType.SUPPRESSED: "suppressed_at",
}


@dataclass(frozen=True)
class ProviderEventResult:
    handled: bool
    message_id: str | None = None
    outcome: MessageOutcomeType | None = None
    reason: str | None = None


@dataclass
class OutcomePollSummary:
    total_checked: int = 0
    delivered: int = 0
    bounced: int = 0
    failed: int = 0
    complained: int = 0
    suppressed: int = 0
    unchanged: int = 0

    def count(self, outcome: MessageOutcomeType) -> None:
        self.total_checked += 1
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


# =============================================================================
# Mapping
# =============================================================================

def extract_message_id(data: dict[str, Any] | None) -> str | None:
    """Provider message id from an event payload (first non-blank known key)."""
    if not data:
        return None
    for key in MESSAGE_ID_KEYS:
        candidate = data.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def map_event_type(event_type: str | None) -> MessageOutcomeType | None:
    if not event_type:
        return None
    normalized = event_type.lower()
    for needles, outcome in _EVENT_TYPE_RULES:
        if any(needle in normalized for needle in needles):
            return outcome
    return None


def infer_outcome_from_tags(tags: Iterable[str]) -> MessageOutcomeType:
    """Simulated outcome carried by an `outcome=<x>` tag; delivered by default."""
    for tag in tags or ():
        if tag.startswith(OUTCOME_TAG_PREFIX):
            value = tag[len(OUTCOME_TAG_PREFIX):]
            try:
                return MessageOutcomeType(value)
            except ValueError:
                return MessageOutcomeType.DELIVERED
    return MessageOutcomeType.DELIVERED


def determine_outcome(contact: Contact) -> MessageOutcomeType:
    """Outcome implied by a contact's status, falling back to its tags."""
    if contact.status == ContactStatus.SUPPRESSED.value:
        return MessageOutcomeType.SUPPRESSED
    if contact.status == ContactStatus.COMPLAINED.value:
        return MessageOutcomeType.COMPLAINED
    if contact.status == ContactStatus.BOUNCED.value:
        return MessageOutcomeType.BOUNCED
    return infer_outcome_from_tags(contact.tags)


def message_status_for(outcome: MessageOutcomeType) -> MessageStatus:
    return MessageStatus.SENT if outcome == MessageOutcomeType.DELIVERED else MessageStatus.FAILED


def outcome_fields(outcome: MessageOutcomeType, now: datetime, details: dict[str, Any]) -> dict[str, Any]:
    """Outcome row values: only the timestamp matching `outcome` is set."""
    fields: dict[str, Any] = {name: None for name in _TIMESTAMP_FIELD_BY_OUTCOME.values()}
    fields[_TIMESTAMP_FIELD_BY_OUTCOME[outcome]] = now
    fields["last_event"] = outcome.value
    fields["details"] = details
    return fields


# =============================================================================
# Provider events
# =============================================================================

def _apply_contact_outcome(db: Session, contact: Contact, outcome: MessageOutcomeType) -> None:
    next_status = _CONTACT_STATUS_BY_OUTCOME.get(outcome)
    if next_status is None:
        return

    if outcome == MessageOutcomeType.SUPPRESSED:
        suppression_service.suppress_contact(
            db, contact, outcome.value, source=SuppressionSource.WEBHOOK
        )
        return

    # SUPPRESSED is the strongest exclusion and is never downgraded
    if contact.status != ContactStatus.SUPPRESSED.value:
        contact.status = next_status.value
    if outcome == MessageOutcomeType.BOUNCED:
        suppression_service.ensure_suppression(
            db, contact.id, outcome.value, source=SuppressionSource.WEBHOOK
        )


def process_provider_event(
    db: Session,
    event_type: str | None,
    data: dict[str, Any] | None,
    *,
    now: datetime | None = None,
) -> ProviderEventResult:
    """
    Apply one provider delivery event to its message and contact.

    Unknown messages and event types are reported as unhandled. A repeat
    of the message's last outcome is a no-op. Commits.
    """
    now = as_utc(now) or utcnow()
    outcome = map_event_type(event_type)
    external_id = extract_message_id(data)

    if not external_id:
        return ProviderEventResult(handled=False, reason="Missing message id")
    if outcome is None:
        return ProviderEventResult(handled=False, message_id=external_id, reason="Unrecognized event type")

    message = (
        db.query(Message)
        .options(selectinload(Message.contact), selectinload(Message.outcome))
        .filter(Message.external_message_id == external_id)
        .first()
    )
    if not message:
        return ProviderEventResult(
            handled=False, message_id=external_id, outcome=outcome, reason="Message not found"
        )

    if message.outcome and message.outcome.last_event == outcome.value:
        return ProviderEventResult(handled=True, message_id=str(message.id), outcome=outcome)

    message_service.upsert_message_outcome(
        db,
        message.id,
        commit=False,
        **outcome_fields(outcome, now, {"source": SuppressionSource.WEBHOOK.value}),
    )
    message.status = message_status_for(outcome).value
    message.last_status_check_at = now
    _apply_contact_outcome(db, message.contact, outcome)
    db.commit()

    logger.info(
        "Provider event applied: outcome=%s",
        outcome.value,
        extra=build_log_context(message_id=message.id, contact_id=message.contact_id),
    )
    return ProviderEventResult(handled=True, message_id=str(message.id), outcome=outcome)


# =============================================================================
# Status polling
# =============================================================================

def load_poll_candidates(db: Session, batch_size: int) -> list[Message]:
    return (
        db.query(Message)
        .options(selectinload(Message.contact), selectinload(Message.outcome))
        .filter(
            Message.external_message_id.isnot(None),
            Message.status == MessageStatus.SENT.value,
        )
        .order_by(Message.sent_at.asc())
        .limit(batch_size)
        .all()
    )


def poll_pending_messages(
    db: Session,
    *,
    batch_size: int = OUTCOME_POLL_BATCH_SIZE,
    now: datetime | None = None,
) -> OutcomePollSummary:
    """
    Settle the outcome of recently sent messages.

    The outcome is read off the contact (status, then `outcome=` tag), so
    provider test addresses resolve to their simulated result. Messages
    sent more than two hours ago are left unchanged. Only the message and
    its outcome row are written. Commits once.
    """
    now = as_utc(now) or utcnow()
    summary = OutcomePollSummary()

    for message in load_poll_candidates(db, batch_size):
        sent_at = as_utc(message.sent_at)
        if sent_at is None or now - sent_at > OUTCOME_POLL_WINDOW:
            summary.unchanged += 1
            continue

        outcome = determine_outcome(message.contact)
        if message.outcome and message.outcome.last_event == outcome.value:
            summary.unchanged += 1
            message.last_status_check_at = now
            continue

        message_service.upsert_message_outcome(
            db,
            message.id,
            commit=False,
            **outcome_fields(outcome, now, {"expected": outcome.value}),
        )
        message.status = message_status_for(outcome).value
        message.last_status_check_at = now
        summary.count(outcome)

    db.commit()

    logger.info(
        "Email status poll complete: checked=%s delivered=%s bounced=%s failed=%s complained=%s suppressed=%s unchanged=%s",
        summary.total_checked,
        summary.delivered,
        summary.bounced,
        summary.failed,
        summary.complained,
        summary.suppressed,
        summary.unchanged,
        extra=build_log_context(job="poll_email_status"),
    )
    return summary
