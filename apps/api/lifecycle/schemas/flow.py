"""Flow schemas for definition validation and job payloads."""
from datetime import datetime
from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lifecycle.db.enums import FlowStepType


# =============================================================================
# Step Configuration (tagged by step type)
# =============================================================================

class TriggerConfig(BaseModel):
    """TRIGGER step: the event that starts the flow."""
    model_config = ConfigDict(extra="forbid")

    event_name: str | None = Field(None, min_length=1)


class DelayConfig(BaseModel):
    """DELAY step: wait before the next step (None falls back to the flow delay)."""
    model_config = ConfigDict(extra="forbid")

    minutes: int | None = Field(None, ge=0)


class SegmentFilterConfig(BaseModel):
    """SEGMENT_FILTER step: continue only while the contact is a member."""
    model_config = ConfigDict(extra="forbid")

    segment_id: UUID | None = None


class SendTemplateConfig(BaseModel):
    """SEND_TEMPLATE step: send (or schedule) the template."""
    model_config = ConfigDict(extra="forbid")

    template_id: UUID | None = None


StepConfig = Union[TriggerConfig, DelayConfig, SegmentFilterConfig, SendTemplateConfig]

STEP_CONFIG_MODELS: dict[FlowStepType, type[BaseModel]] = {
    FlowStepType.TRIGGER: TriggerConfig,
    FlowStepType.DELAY: DelayConfig,
    FlowStepType.SEGMENT_FILTER: SegmentFilterConfig,
    FlowStepType.SEND_TEMPLATE: SendTemplateConfig,
}


def parse_step_config(step_type: str | FlowStepType, raw: dict | None) -> StepConfig | None:
    """
    Parse a stored step config into its typed model.

    Returns None for unknown step types. Raises pydantic.ValidationError
    when the config does not match the step type.
    """
    try:
        model = STEP_CONFIG_MODELS[FlowStepType(step_type)]
    except ValueError:
        return None
    return model.model_validate(raw or {})


# =============================================================================
# Flow Definition
# =============================================================================

class FlowStepDefinition(BaseModel):
    """Explicit step in a flow definition (orders may have gaps)."""
    order: int = Field(..., ge=1)
    type: FlowStepType
    config: dict[str, Any] = Field(default_factory=dict)


class FlowCreate(BaseModel):
    """Create a new flow.

    When `steps` is omitted the steps are derived from the shortcut fields:
    TRIGGER, optional DELAY, optional SEGMENT_FILTER, SEND_TEMPLATE.
    """
    name: str = Field(..., min_length=1, max_length=200)
    trigger_event_name: str = Field(..., min_length=1, max_length=200)
    template_id: UUID
    delay_minutes: int | None = Field(None, ge=0)
    segment_id: UUID | None = None
    use_optimizer: bool = True
    description: str | None = None
    steps: list[FlowStepDefinition] | None = None

    @field_validator("name", "trigger_event_name")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def check_step_orders(self) -> "FlowCreate":
        if self.steps is not None:
            if not self.steps:
                raise ValueError("steps must not be empty")
            orders = [step.order for step in self.steps]
            if len(orders) != len(set(orders)):
                raise ValueError("step orders must be unique")
        return self


# =============================================================================
# Job Payloads
# =============================================================================

class ProcessFlowsRequest(BaseModel):
    """Body for the process-flows job trigger."""
    limit: int | None = Field(None, ge=1, le=500)
    now: datetime | None = None


class ContactEventRequest(BaseModel):
    """Body for event ingestion."""
    contact_id: UUID | None = None
    contact_email: str | None = None
    event_name: str = Field(..., min_length=1, max_length=200)
    external_user_id: str | None = None
    occurred_at: datetime | None = None
    properties: dict[str, Any] | None = None

    @model_validator(mode="after")
    def require_contact_reference(self) -> "ContactEventRequest":
        if not self.contact_id and not (self.contact_email and self.contact_email.strip()):
            raise ValueError("Provide contact_id or contact_email")
        return self
