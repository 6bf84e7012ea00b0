"""Provider delivery event payloads."""
from typing import Any

from pydantic import BaseModel


class ProviderEventRequest(BaseModel):
    """Delivery event as relayed from the mail provider's webhook."""
    type: str | None = None
    data: dict[str, Any] | None = None


class ProviderEventResponse(BaseModel):
    success: bool
    handled: bool
    message_id: str | None = None
    outcome: str | None = None
    reason: str | None = None
