"""Hygiene-related enums."""

from enum import Enum


class HygieneRiskLevel(str, Enum):
    """Deliverability risk tier."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
