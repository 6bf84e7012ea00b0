"""Send-time optimizer payloads."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class RecommendRequest(BaseModel):
    """Body for an on-demand recommendation."""
    contact_id: UUID
    reference_time: datetime | None = None


class RecommendationResponse(BaseModel):
    success: bool
    contact_id: UUID
    hour: int | None
    send_at: datetime | None
    score: float
    baseline_score: float
    reason: str
    throttled: bool
    segment: str | None = None


class OptimizerDecisionRead(BaseModel):
    """One audited recommendation, flattened from its rationale."""
    id: UUID
    contact_id: UUID
    contact_email: str | None
    contact_tags: list[str]
    recommended_hour: int
    score: float
    baseline_score: float
    segment: str
    throttled: bool
    recommended_at: str | None
    created_at: datetime


class OptimizerDecisionListResponse(BaseModel):
    success: bool
    decisions: list[OptimizerDecisionRead]
