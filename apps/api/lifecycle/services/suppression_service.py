"""Suppression ledger and the shared send-eligibility contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from lifecycle.db.enums import ContactStatus, SuppressionSource
from lifecycle.db.models import Contact, Suppression

logger = logging.getLogger(__name__)

ContactT = TypeVar("ContactT", bound=Contact)


@dataclass(frozen=True)
class SuppressionChange:
    status_changed: bool
    suppression_created: bool


def add_suppression(
    db: Session,
    contact_id: UUID,
    reason: str,
    source: SuppressionSource | str = SuppressionSource.SYSTEM,
    notes: str | None = None,
) -> Suppression:
    """Append a ledger entry (flushed, not committed)."""
    source_value = source.value if isinstance(source, SuppressionSource) else source
    suppression = Suppression(
        contact_id=contact_id,
        reason=reason,
        source=source_value,
        notes=notes,
    )
    db.add(suppression)
    db.flush()
    return suppression


def has_suppression(db: Session, contact_id: UUID, reason: str) -> bool:
    return (
        db.query(Suppression.id)
        .filter(Suppression.contact_id == contact_id, Suppression.reason == reason)
        .first()
        is not None
    )


def list_suppressions(db: Session, contact_id: UUID) -> list[Suppression]:
    return (
        db.query(Suppression)
        .filter(Suppression.contact_id == contact_id)
        .order_by(Suppression.created_at.asc())
        .all()
    )


def ensure_suppression(
    db: Session,
    contact_id: UUID,
    reason: str,
    source: SuppressionSource | str = SuppressionSource.SYSTEM,
    notes: str | None = None,
) -> bool:
    """Append a ledger entry unless (contact, reason) is already recorded."""
    if has_suppression(db, contact_id, reason):
        return False
    add_suppression(db, contact_id, reason, source=source, notes=notes)
    return True


def suppress_contact(
    db: Session,
    contact: Contact,
    reason: str,
    source: SuppressionSource | str = SuppressionSource.SYSTEM,
    notes: str | None = None,
) -> SuppressionChange:
    """
    Move a contact to SUPPRESSED and record why.

    Idempotent: an already-suppressed contact keeps its status, and no
    second ledger row is written for the same (contact, reason) pair.
    Does not commit.
    """
    status_changed = False
    if contact.status != ContactStatus.SUPPRESSED.value:
        contact.status = ContactStatus.SUPPRESSED.value
        status_changed = True

    suppression_created = ensure_suppression(db, contact.id, reason, source=source, notes=notes)

    if status_changed or suppression_created:
        logger.info(
            "Contact suppressed: contact_id=%s reason=%s status_changed=%s",
            contact.id,
            reason,
            status_changed,
        )
    return SuppressionChange(status_changed=status_changed, suppression_created=suppression_created)


def is_contact_sendable(contact: Contact) -> bool:
    """A contact can be messaged only with an email and ACTIVE status."""
    return bool(contact.email) and contact.status == ContactStatus.ACTIVE.value


def ineligibility_reason(contact: Contact) -> str | None:
    """Human-readable reason a contact cannot be messaged, or None."""
    if not contact.email:
        return "Contact missing email"
    if contact.status != ContactStatus.ACTIVE.value:
        return f"Contact status is {contact.status}"
    return None


def partition_contacts_by_eligibility(
    contacts: Iterable[ContactT],
) -> tuple[list[ContactT], list[ContactT]]:
    """Split contacts into (sendable, skipped) for flows and broadcasts."""
    sendable: list[ContactT] = []
    skipped: list[ContactT] = []
    for contact in contacts:
        if is_contact_sendable(contact):
            sendable.append(contact)
        else:
            skipped.append(contact)
    return sendable, skipped
