"""Demo contact list for exercising sends, bounces and complaints.

Emails use the provider's test domain so each outcome is simulated by
the provider: `delivered+001@resend.dev`, `bounced+001@resend.dev`, ...
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.orm import Session

from lifecycle.core.constants import OUTCOME_TAG_PREFIX
from lifecycle.db.enums import ContactStatus
from lifecycle.db.models import Contact

logger = logging.getLogger(__name__)

TEST_LIST_TAG = "test-list"
TEST_EMAIL_DOMAIN = "resend.dev"
TEST_TIMEZONES = (
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
)
MAX_TEST_PROPENSITY = 0.95


@dataclass(frozen=True)
class OutcomeProfile:
    key: str
    count: int
    status: ContactStatus
    base_propensity: float
    lifecycle_stage: str


OUTCOME_PROFILES = (
    OutcomeProfile("delivered", 200, ContactStatus.ACTIVE, 0.78, "active"),
    OutcomeProfile("bounced", 20, ContactStatus.BOUNCED, 0.04, "inactive"),
    OutcomeProfile("suppressed", 5, ContactStatus.SUPPRESSED, 0.01, "suppressed"),
    OutcomeProfile("complained", 3, ContactStatus.COMPLAINED, 0.0, "complained"),
)


@dataclass(frozen=True)
class DemoContactSpec:
    email: str
    status: ContactStatus
    tags: tuple[str, ...]
    timezone: str
    lifecycle_stage: str
    propensity: float

    @property
    def outcome(self) -> str:
        return self.email.split("+", 1)[0]


@dataclass(frozen=True)
class UpsertResult:
    created: int
    updated: int


def generate_test_contact_specs() -> list[DemoContactSpec]:
    specs: list[DemoContactSpec] = []
    for profile in OUTCOME_PROFILES:
        tags = (TEST_LIST_TAG, f"{OUTCOME_TAG_PREFIX}{profile.key}")
        for index in range(1, profile.count + 1):
            propensity = round(profile.base_propensity + (index % 5) * 0.01, 2)
            specs.append(
                DemoContactSpec(
                    email=f"{profile.key}+{index:03d}@{TEST_EMAIL_DOMAIN}",
                    status=profile.status,
                    tags=tags,
                    timezone=TEST_TIMEZONES[(index - 1) % len(TEST_TIMEZONES)],
                    lifecycle_stage=profile.lifecycle_stage,
                    propensity=min(propensity, MAX_TEST_PROPENSITY),
                )
            )
    return specs


def summarize_outcome_counts(specs: Iterable[DemoContactSpec]) -> dict[str, int]:
    counts = Counter(spec.outcome for spec in specs)
    return {profile.key: counts.get(profile.key, 0) for profile in OUTCOME_PROFILES}


def upsert_test_contacts(db: Session, specs: list[DemoContactSpec] | None = None) -> UpsertResult:
    """Create or refresh the demo contacts, keyed by email."""
    specs = specs if specs is not None else generate_test_contact_specs()
    existing = {
        contact.email: contact
        for contact in db.query(Contact).filter(Contact.email.in_([spec.email for spec in specs])).all()
    }

    created = 0
    for spec in specs:
        contact = existing.get(spec.email)
        if contact is None:
            contact = Contact(email=spec.email, last_event_at=None, last_message_sent_at=None)
            db.add(contact)
            created += 1
        contact.status = spec.status.value
        contact.tags = list(spec.tags)
        contact.timezone = spec.timezone
        contact.lifecycle_stage = spec.lifecycle_stage
        contact.propensity = spec.propensity

    db.commit()
    result = UpsertResult(created=created, updated=len(specs) - created)
    logger.info("Test contacts ready: created=%s updated=%s", result.created, result.updated)
    return result
