"""SQLAlchemy ORM models."""

from lifecycle.db.models.audit import HygieneEvaluation, OptimizerDecision, Suppression
from lifecycle.db.models.contacts import Contact, ContactEvent, Template
from lifecycle.db.models.flows import Flow, FlowRun, FlowStep
from lifecycle.db.models.messages import Message, MessageOutcome
from lifecycle.db.models.segments import Segment, SegmentMembership

__all__ = [
    "Contact",
    "ContactEvent",
    "Flow",
    "FlowRun",
    "FlowStep",
    "HygieneEvaluation",
    "Message",
    "MessageOutcome",
    "OptimizerDecision",
    "Segment",
    "SegmentMembership",
    "Suppression",
    "Template",
]
