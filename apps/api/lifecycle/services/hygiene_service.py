"""Deliverability hygiene: rule-based risk scoring and the periodic sweep."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from lifecycle.core.constants import (
    HYGIENE_SUPPRESSION_REASON,
    LOW_PROPENSITY_THRESHOLD,
    STALE_EVENT_THRESHOLD_DAYS,
    STALE_SEND_THRESHOLD_DAYS,
    SYNTHETIC_TAG,
)
from lifecycle.core.structured_logging import build_log_context
from lifecycle.db.enums import ContactStatus, HygieneRiskLevel, SuppressionSource
from lifecycle.db.models import Contact, HygieneEvaluation
from lifecycle.db.types import as_utc, utcnow
from lifecycle.services import suppression_service

logger = logging.getLogger(__name__)

SCORE_EPSILON = 0.001
HYGIENE_SUPPRESSION_NOTES = "Auto-suppressed due to hygiene risk"

# status -> (score, reason) for contacts already excluded from sending
_EXCLUDED_STATUS_RULES: dict[str, tuple[float, str]] = {
    ContactStatus.BOUNCED.value: (95, "Hard bounce detected"),
    ContactStatus.COMPLAINED.value: (98, "Complaint reported"),
    ContactStatus.SUPPRESSED.value: (90, "Contact already suppressed"),
}


@dataclass(frozen=True)
class HygieneResult:
    contact_id: UUID | None
    risk_level: HygieneRiskLevel
    score: float
    reasons: list[str] = field(default_factory=list)
    should_suppress: bool = False


@dataclass
class HygieneSweepSummary:
    evaluated: int = 0
    high_risk: int = 0
    medium_risk: int = 0
    low_risk: int = 0
    suppressions_created: int = 0
    contacts_suppressed: int = 0

    def count(self, risk_level: HygieneRiskLevel) -> None:
        if risk_level == HygieneRiskLevel.HIGH:
            self.high_risk += 1
        elif risk_level == HygieneRiskLevel.MEDIUM:
            self.medium_risk += 1
        else:
            self.low_risk += 1


def _days_since(moment: datetime | None, now: datetime) -> float:
    if moment is None:
        return float("inf")
    return (now - as_utc(moment)) / timedelta(days=1)


def compute_hygiene_score(contact: Contact, now: datetime | None = None) -> HygieneResult:
    """
    Score a contact's deliverability risk.

    Excluded statuses are HIGH outright. Otherwise the contact starts LOW
    at 20 and each staleness/propensity check can lift it to MEDIUM; the
    score is a running maximum. Synthetic contacts are never suppressible.
    """
    now = as_utc(now) or utcnow()
    risk_level = HygieneRiskLevel.LOW
    score: float = 20
    reasons: list[str] = []
    should_suppress = False
    propensity = contact.propensity or 0.0

    excluded = _EXCLUDED_STATUS_RULES.get(contact.status)
    if excluded:
        score, reason = excluded
        risk_level = HygieneRiskLevel.HIGH
        reasons.append(reason)
        should_suppress = True

    days_since_event = _days_since(contact.last_event_at, now)
    days_since_send = _days_since(contact.last_message_sent_at, now)

    if risk_level != HygieneRiskLevel.HIGH:
        if days_since_send > STALE_SEND_THRESHOLD_DAYS:
            risk_level = HygieneRiskLevel.MEDIUM
            score = max(score, 65)
            reasons.append(f"No sends in last {STALE_SEND_THRESHOLD_DAYS} days")

        if days_since_event > STALE_EVENT_THRESHOLD_DAYS:
            risk_level = HygieneRiskLevel.MEDIUM
            score = max(score, 55)
            reasons.append(f"No engagement events in last {STALE_EVENT_THRESHOLD_DAYS} days")

        if 0 < propensity < LOW_PROPENSITY_THRESHOLD:
            risk_level = HygieneRiskLevel.MEDIUM
            score = max(score, 50)
            reasons.append("Low propensity segment")

        if (
            risk_level == HygieneRiskLevel.LOW
            and propensity >= LOW_PROPENSITY_THRESHOLD
            and days_since_event < STALE_EVENT_THRESHOLD_DAYS
        ):
            score = 25
            reasons.append("Healthy engagement")

    if risk_level == HygieneRiskLevel.HIGH and SYNTHETIC_TAG in (contact.tags or []):
        should_suppress = False
        reasons.append("Synthetic contact safeguard")

    return HygieneResult(
        contact_id=contact.id,
        risk_level=risk_level,
        score=score,
        reasons=reasons,
        should_suppress=should_suppress,
    )


def _needs_risk_update(contact: Contact, result: HygieneResult) -> bool:
    return (
        contact.hygiene_risk_level != result.risk_level.value
        or abs((contact.hygiene_score or 0.0) - result.score) > SCORE_EPSILON
    )


def run_hygiene_sweep(
    db: Session,
    *,
    suppress_high_risk: bool | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> HygieneSweepSummary:
    """
    Evaluate contacts, persist one HygieneEvaluation each and apply suppressions.

    Suppression is applied unless `suppress_high_risk` is explicitly False.
    Commits once at the end.
    """
    now = as_utc(now) or utcnow()
    apply_suppression = suppress_high_risk is not False
    summary = HygieneSweepSummary()

    query = db.query(Contact).order_by(Contact.created_at.asc(), Contact.id.asc())
    if limit is not None:
        query = query.limit(limit)
    contacts = query.all()

    for contact in contacts:
        result = compute_hygiene_score(contact, now)
        summary.evaluated += 1
        summary.count(result.risk_level)

        will_suppress = result.should_suppress and apply_suppression
        db.add(
            HygieneEvaluation(
                contact_id=contact.id,
                risk_level=result.risk_level.value,
                score=result.score,
                suppressed=will_suppress,
                reasons={"reasons": result.reasons},
            )
        )

        if _needs_risk_update(contact, result):
            contact.hygiene_risk_level = result.risk_level.value
            contact.hygiene_score = result.score

        if will_suppress:
            change = suppression_service.suppress_contact(
                db,
                contact,
                HYGIENE_SUPPRESSION_REASON,
                source=SuppressionSource.SYSTEM,
                notes=HYGIENE_SUPPRESSION_NOTES,
            )
            if change.status_changed:
                summary.contacts_suppressed += 1
            if change.suppression_created:
                summary.suppressions_created += 1

    db.commit()

    logger.info(
        "Hygiene sweep complete: evaluated=%s high=%s medium=%s low=%s suppressions_created=%s contacts_suppressed=%s",
        summary.evaluated,
        summary.high_risk,
        summary.medium_risk,
        summary.low_risk,
        summary.suppressions_created,
        summary.contacts_suppressed,
        extra=build_log_context(job="hygiene_sweep"),
    )
    return summary
