"""Contact-related enums."""

from enum import Enum


class ContactStatus(str, Enum):
    """Lifecycle status of a contact.

    Every status other than ACTIVE is sticky with respect to sending.
    """

    ACTIVE = "active"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    SUPPRESSED = "suppressed"


class SegmentFilterType(str, Enum):
    """Filters a segment definition may combine (all must match)."""

    STATUS = "status"
    TAG = "tag"
    TIMEZONE = "timezone"
    LAST_EVENT_WITHIN_DAYS = "last_event_within_days"
