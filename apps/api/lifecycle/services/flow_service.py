"""Flow definitions, operator status changes and event-triggered runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session, selectinload

from lifecycle.core.errors import InvalidDefinitionError, NotFoundError
from lifecycle.core.structured_logging import build_log_context
from lifecycle.db.enums import FlowRunStatus, FlowStatus, FlowStepType
from lifecycle.db.models import Contact, Flow, FlowRun, FlowStep, Segment, Template
from lifecycle.db.types import as_utc, utcnow
from lifecycle.schemas.flow import FlowCreate, FlowStepDefinition, parse_step_config
from lifecycle.services.suppression_service import is_contact_sendable

logger = logging.getLogger(__name__)


@dataclass
class TriggerSummary:
    created_runs: int = 0
    skipped_flows: int = 0


def _derive_steps(data: FlowCreate) -> list[FlowStepDefinition]:
    """TRIGGER, optional DELAY, optional SEGMENT_FILTER, SEND_TEMPLATE."""
    steps = [
        FlowStepDefinition(
            order=1,
            type=FlowStepType.TRIGGER,
            config={"event_name": data.trigger_event_name},
        )
    ]
    if data.delay_minutes and data.delay_minutes > 0:
        steps.append(
            FlowStepDefinition(
                order=len(steps) + 1,
                type=FlowStepType.DELAY,
                config={"minutes": data.delay_minutes},
            )
        )
    if data.segment_id:
        steps.append(
            FlowStepDefinition(
                order=len(steps) + 1,
                type=FlowStepType.SEGMENT_FILTER,
                config={"segment_id": str(data.segment_id)},
            )
        )
    steps.append(
        FlowStepDefinition(
            order=len(steps) + 1,
            type=FlowStepType.SEND_TEMPLATE,
            config={"template_id": str(data.template_id)},
        )
    )
    return steps


def _validated_config(step: FlowStepDefinition) -> dict[str, Any]:
    try:
        config = parse_step_config(step.type, step.config)
    except ValidationError as exc:
        raise InvalidDefinitionError(
            f"Invalid config for {step.type.value} step {step.order}: {exc.error_count()} error(s)"
        ) from exc
    return config.model_dump(mode="json", exclude_none=True) if config else {}


def create_flow_definition(db: Session, data: FlowCreate) -> Flow:
    """
    Create a DRAFT flow with its steps.

    Raises NotFoundError for unknown template/segment references and
    InvalidDefinitionError for step configs that do not match their type.
    """
    if not db.get(Template, data.template_id):
        raise NotFoundError(f"Template {data.template_id} not found")
    if data.segment_id and not db.get(Segment, data.segment_id):
        raise NotFoundError(f"Segment {data.segment_id} not found")

    definitions = data.steps if data.steps is not None else _derive_steps(data)
    definitions = sorted(definitions, key=lambda step: step.order)

    flow = Flow(
        name=data.name,
        status=FlowStatus.DRAFT.value,
        trigger_event_name=data.trigger_event_name,
        delay_minutes=data.delay_minutes,
        segment_id=data.segment_id,
        template_id=data.template_id,
        use_optimizer=data.use_optimizer,
        description=data.description,
    )
    flow.steps = [
        FlowStep(order=step.order, type=step.type.value, config=_validated_config(step))
        for step in definitions
    ]
    db.add(flow)
    db.commit()
    db.refresh(flow)

    logger.info(
        "Flow created: flow_id=%s steps=%s",
        flow.id,
        len(flow.steps),
        extra=build_log_context(flow_id=flow.id),
    )
    return flow


def get_flow(db: Session, flow_id: UUID) -> Flow:
    flow = db.get(Flow, flow_id)
    if not flow:
        raise NotFoundError(f"Flow {flow_id} not found")
    return flow


def list_flows(db: Session) -> list[Flow]:
    return (
        db.query(Flow)
        .options(selectinload(Flow.steps))
        .order_by(Flow.created_at.asc())
        .all()
    )


def set_flow_status(db: Session, flow_id: UUID, status: FlowStatus | str) -> Flow:
    """Operator action: move a flow between DRAFT, ACTIVE and PAUSED."""
    try:
        new_status = FlowStatus(status)
    except ValueError as exc:
        raise InvalidDefinitionError(f"Unknown flow status: {status}") from exc

    flow = get_flow(db, flow_id)
    flow.status = new_status.value
    db.commit()
    db.refresh(flow)
    return flow


def first_action_step(steps: list[FlowStep]) -> FlowStep | None:
    for step in sorted(steps, key=lambda s: s.order):
        if step.type != FlowStepType.TRIGGER.value:
            return step
    return None


def trigger_flows_for_event(
    db: Session,
    contact_id: UUID,
    event_name: str,
    *,
    event_id: UUID | str | None = None,
    properties: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
    commit: bool = True,
) -> TriggerSummary:
    """
    Start a PENDING run in every ACTIVE flow triggered by `event_name`.

    Contacts that cannot be messaged start nothing. Flows with no action
    step are counted as skipped.
    """
    now = as_utc(occurred_at) or utcnow()
    contact = db.get(Contact, contact_id)
    if not contact:
        raise NotFoundError(f"Contact {contact_id} not found")

    summary = TriggerSummary()
    if not is_contact_sendable(contact):
        return summary

    flows = (
        db.query(Flow)
        .options(selectinload(Flow.steps))
        .filter(
            Flow.status == FlowStatus.ACTIVE.value,
            Flow.trigger_event_name == event_name,
        )
        .all()
    )

    for flow in flows:
        step = first_action_step(flow.steps)
        if not step:
            summary.skipped_flows += 1
            continue

        db.add(
            FlowRun(
                flow_id=flow.id,
                contact_id=contact.id,
                status=FlowRunStatus.PENDING.value,
                next_step_order=step.order,
                scheduled_at=now,
                context={
                    "event_id": str(event_id) if event_id else None,
                    "event_name": event_name,
                    "triggered_at": now.isoformat(),
                    "properties": properties,
                },
            )
        )
        summary.created_runs += 1

    if commit:
        db.commit()
    else:
        db.flush()

    if summary.created_runs:
        logger.info(
            "Flows triggered: event=%s runs=%s skipped=%s",
            event_name,
            summary.created_runs,
            summary.skipped_flows,
            extra=build_log_context(contact_id=contact.id),
        )
    return summary


def list_runs(db: Session, flow_id: UUID, limit: int = 20) -> list[FlowRun]:
    return (
        db.query(FlowRun)
        .filter(FlowRun.flow_id == flow_id)
        .order_by(FlowRun.created_at.desc())
        .limit(limit)
        .all()
    )
