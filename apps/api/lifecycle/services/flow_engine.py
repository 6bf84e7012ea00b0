"""
Flow execution engine.

Each scheduler tick pulls due runs (PENDING/WAITING with scheduled_at <= now)
and walks every run through its flow's steps until the run either waits on
a delay, gets cancelled, sends, or runs off the end of the flow. Runs are
processed sequentially and committed one by one; a failing run is marked
FAILED and the tick moves on.

Callers must not run two ticks concurrently over the same runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from lifecycle.core.config import settings
from lifecycle.core.constants import CONTACT_NOT_IN_SEGMENT_REASON, SCHEDULE_THRESHOLD
from lifecycle.core.errors import FlowRunError
from lifecycle.core.structured_logging import build_log_context
from lifecycle.db.enums import DUE_RUN_STATUSES, FlowRunStatus, FlowStepType, MessageStatus
from lifecycle.db.models import Flow, FlowRun, FlowStep, Template
from lifecycle.db.types import as_utc, utcnow
from lifecycle.schemas.flow import DelayConfig, SegmentFilterConfig, SendTemplateConfig, parse_step_config
from lifecycle.services import message_service, segment_service
from lifecycle.services.mail_transport import MailTransport, MailTransportError, build_tag_record, get_default_transport
from lifecycle.services.optimizer_service import Recommendation, try_recommend_send_time
from lifecycle.services.suppression_service import ineligibility_reason

logger = logging.getLogger(__name__)

Recommender = Callable[[Session, UUID, datetime], tuple[Recommendation | None, str | None]]


class RunOutcome(str, Enum):
    """How a run left the current tick."""

    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


@dataclass
class FlowRunSummary:
    evaluated: int = 0
    completed: int = 0
    rescheduled: int = 0
    cancelled: int = 0
    failed: int = 0

    def count(self, outcome: RunOutcome) -> None:
        if outcome == RunOutcome.COMPLETED:
            self.completed += 1
        elif outcome == RunOutcome.RESCHEDULED:
            self.rescheduled += 1
        elif outcome == RunOutcome.CANCELLED:
            self.cancelled += 1


def next_step_order(current: int, steps: Sequence[FlowStep]) -> int:
    """Smallest step order strictly greater than `current`, else current + 1."""
    later = [step.order for step in steps if step.order > current]
    return min(later) if later else current + 1


def _finish(run: FlowRun, status: FlowRunStatus, now: datetime, *, pointer: int, reason: str | None = None) -> None:
    run.status = status.value
    run.next_step_order = pointer
    run.completed_at = now
    if reason is not None:
        run.cancelled_reason = reason


def _delay_minutes(step: FlowStep, flow: Flow) -> int:
    config = parse_step_config(step.type, step.config)
    if isinstance(config, DelayConfig) and config.minutes is not None:
        return config.minutes
    return flow.delay_minutes or 0


def _segment_id(step: FlowStep, flow: Flow) -> UUID | None:
    config = parse_step_config(step.type, step.config)
    if isinstance(config, SegmentFilterConfig) and config.segment_id:
        return config.segment_id
    return flow.segment_id


def _template(db: Session, step: FlowStep, flow: Flow) -> Template:
    config = parse_step_config(step.type, step.config)
    if isinstance(config, SendTemplateConfig) and config.template_id:
        template = db.get(Template, config.template_id)
        if not template:
            raise FlowRunError(f"Template {config.template_id} not found")
        return template
    return flow.template


def _execute_send_step(
    db: Session,
    run: FlowRun,
    step: FlowStep,
    now: datetime,
    transport: MailTransport,
    recommender: Recommender,
) -> RunOutcome:
    flow = run.flow
    contact = run.contact
    following = next_step_order(step.order, flow.steps)

    reason = ineligibility_reason(contact)
    if reason:
        _finish(run, FlowRunStatus.CANCELLED, now, pointer=step.order, reason=reason)
        return RunOutcome.CANCELLED

    send_at: datetime | None = None
    if flow.use_optimizer:
        recommendation, error = recommender(db, contact.id, now)
        if error:
            logger.warning(
                "Optimizer unavailable for flow send, sending without recommendation: %s",
                error,
                extra=build_log_context(flow_id=flow.id, run_id=run.id, contact_id=contact.id),
            )
        elif recommendation:
            send_at = recommendation.send_at

    template = _template(db, step, flow)

    if send_at and send_at - now > SCHEDULE_THRESHOLD:
        message_service.create_message(
            db,
            contact_id=contact.id,
            template_id=template.id,
            flow_run_id=run.id,
            status=MessageStatus.SCHEDULED,
            scheduled_send_at=send_at,
        )
        _finish(run, FlowRunStatus.COMPLETED, now, pointer=following)
        return RunOutcome.COMPLETED

    try:
        result = transport.send(
            to=contact.email,
            subject=template.subject,
            html=template.html,
            tags=build_tag_record(contact.tags),
        )
    except MailTransportError as exc:
        run.status = FlowRunStatus.FAILED.value
        run.cancelled_reason = exc.message
        raise

    message_service.create_message(
        db,
        contact_id=contact.id,
        template_id=template.id,
        flow_run_id=run.id,
        status=MessageStatus.SENT,
        external_message_id=result.id,
        sent_at=now,
    )
    contact.last_message_sent_at = now
    _finish(run, FlowRunStatus.COMPLETED, now, pointer=following)
    return RunOutcome.COMPLETED


def process_flow_run(
    db: Session,
    run: FlowRun,
    now: datetime,
    *,
    transport: MailTransport,
    recommender: Recommender = try_recommend_send_time,
) -> RunOutcome:
    """
    Walk one run forward from its pointer. Does not commit.

    Zero-minute delays, passed segment filters and unknown step types
    advance within the same tick; a positive delay, a cancellation or a
    send ends it.
    """
    flow = run.flow
    steps_by_order = {step.order: step for step in flow.steps}
    pointer = run.next_step_order

    # Every iteration strictly increases the pointer, so the walk is bounded.
    while True:
        step = steps_by_order.get(pointer)
        if step is None:
            _finish(run, FlowRunStatus.COMPLETED, now, pointer=pointer)
            return RunOutcome.COMPLETED

        if step.type == FlowStepType.DELAY.value:
            minutes = _delay_minutes(step, flow)
            if minutes <= 0:
                pointer = next_step_order(pointer, flow.steps)
                continue
            run.status = FlowRunStatus.WAITING.value
            run.scheduled_at = now + timedelta(minutes=minutes)
            run.next_step_order = next_step_order(pointer, flow.steps)
            return RunOutcome.RESCHEDULED

        if step.type == FlowStepType.SEGMENT_FILTER.value:
            segment_id = _segment_id(step, flow)
            if segment_id and not segment_service.is_contact_in_segment(db, segment_id, run.contact_id):
                _finish(
                    run,
                    FlowRunStatus.CANCELLED,
                    now,
                    pointer=pointer,
                    reason=CONTACT_NOT_IN_SEGMENT_REASON,
                )
                return RunOutcome.CANCELLED
            pointer = next_step_order(pointer, flow.steps)
            continue

        if step.type == FlowStepType.SEND_TEMPLATE.value:
            return _execute_send_step(db, run, step, now, transport, recommender)

        pointer = next_step_order(pointer, flow.steps)


def _mark_failed(db: Session, run_id: UUID, reason: str) -> None:
    run = db.get(FlowRun, run_id)
    if run is None:
        return
    if run.status != FlowRunStatus.FAILED.value:
        run.status = FlowRunStatus.FAILED.value
        run.cancelled_reason = reason
    db.commit()


def load_due_runs(db: Session, now: datetime, limit: int) -> list[FlowRun]:
    return (
        db.query(FlowRun)
        .options(
            selectinload(FlowRun.flow).selectinload(Flow.steps),
            selectinload(FlowRun.flow).selectinload(Flow.template),
            selectinload(FlowRun.contact),
        )
        .filter(
            FlowRun.status.in_([status.value for status in DUE_RUN_STATUSES]),
            FlowRun.scheduled_at <= now,
        )
        .order_by(FlowRun.scheduled_at.asc())
        .limit(limit)
        .all()
    )


def process_due_flow_runs(
    db: Session,
    *,
    now: datetime | None = None,
    limit: int | None = None,
    transport: MailTransport | None = None,
    recommender: Recommender = try_recommend_send_time,
) -> FlowRunSummary:
    """
    One scheduler tick.

    Returns counts of evaluated/completed/rescheduled/cancelled/failed runs.
    A failure in one run never aborts the batch.
    """
    now = as_utc(now) or utcnow()
    if limit is None:
        limit = settings.FLOW_BATCH_LIMIT
    transport = transport or get_default_transport()

    runs = load_due_runs(db, now, limit)
    run_ids = [run.id for run in runs]
    summary = FlowRunSummary(evaluated=len(run_ids))

    for run_id in run_ids:
        run = db.get(FlowRun, run_id)
        log_context = build_log_context(job="process_flows", flow_id=run.flow_id, run_id=run_id)
        try:
            outcome = process_flow_run(db, run, now, transport=transport, recommender=recommender)
            db.commit()
            summary.count(outcome)
        except MailTransportError as exc:
            summary.failed += 1
            logger.warning("Flow run send failed: status=%s", exc.status, extra=log_context)
            db.commit()
        except Exception as exc:
            summary.failed += 1
            logger.exception("Flow run processing failed", extra=log_context)
            db.rollback()
            _mark_failed(db, run_id, str(exc) or "Flow processing failed")

    logger.info(
        "Flow tick complete: evaluated=%s completed=%s rescheduled=%s cancelled=%s failed=%s",
        summary.evaluated,
        summary.completed,
        summary.rescheduled,
        summary.cancelled,
        summary.failed,
        extra=build_log_context(job="process_flows"),
    )
    return summary
