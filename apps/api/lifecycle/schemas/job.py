"""Job trigger payloads and responses."""
from typing import Any

from pydantic import BaseModel


class HygieneSweepRequest(BaseModel):
    """Optional body for the hygiene sweep trigger."""
    suppress_high_risk: bool | None = None
    limit: int | None = None


class JobResponse(BaseModel):
    success: bool
    message: str
    summary: dict[str, Any]


class EventIngestResponse(BaseModel):
    success: bool
    event_id: str
    contact_id: str
    created_runs: int
    skipped_flows: int
