"""Message-related enums."""

from enum import Enum


class MessageStatus(str, Enum):
    """Status of an outbound message."""

    SCHEDULED = "scheduled"  # handed to the scheduled-send mechanism
    SENT = "sent"
    FAILED = "failed"


class SuppressionSource(str, Enum):
    """Who recorded a suppression."""

    SYSTEM = "system"
    WEBHOOK = "webhook"


class MessageOutcomeType(str, Enum):
    """Delivery outcome reported by the mail provider."""

    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"
    COMPLAINED = "complained"
    SUPPRESSED = "suppressed"
