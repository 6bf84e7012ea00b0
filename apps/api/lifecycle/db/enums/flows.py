"""Flow-related enums."""

from enum import Enum


class FlowStatus(str, Enum):
    """Lifecycle status of a flow definition."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"


class FlowStepType(str, Enum):
    """Node types a flow may contain."""

    TRIGGER = "trigger"
    DELAY = "delay"
    SEGMENT_FILTER = "segment_filter"
    SEND_TEMPLATE = "send_template"


class FlowRunStatus(str, Enum):
    """Status of a single contact's walk through a flow."""

    PENDING = "pending"
    WAITING = "waiting"
    COMPLETED = "completed"  # terminal
    CANCELLED = "cancelled"  # terminal
    FAILED = "failed"  # terminal


DUE_RUN_STATUSES = (FlowRunStatus.PENDING, FlowRunStatus.WAITING)
