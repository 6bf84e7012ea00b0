"""Enum definitions for application constants."""

from lifecycle.db.enums.contacts import ContactStatus, SegmentFilterType
from lifecycle.db.enums.flows import (
    DUE_RUN_STATUSES,
    FlowRunStatus,
    FlowStatus,
    FlowStepType,
)
from lifecycle.db.enums.hygiene import HygieneRiskLevel
from lifecycle.db.enums.messages import MessageOutcomeType, MessageStatus, SuppressionSource

__all__ = [
    "ContactStatus",
    "DUE_RUN_STATUSES",
    "FlowRunStatus",
    "FlowStatus",
    "FlowStepType",
    "HygieneRiskLevel",
    "MessageOutcomeType",
    "MessageStatus",
    "SegmentFilterType",
    "SuppressionSource",
]
