"""Tests for the flow execution engine (scheduler tick)."""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import text

from lifecycle.core.constants import CONTACT_NOT_IN_SEGMENT_REASON
from lifecycle.db.enums import ContactStatus, FlowRunStatus, MessageStatus
from lifecycle.db.models import FlowRun, FlowStep, Message, OptimizerDecision, Template
from lifecycle.services.flow_engine import next_step_order, process_due_flow_runs
from lifecycle.services.optimizer_service import Recommendation


SEND_ONLY = [(1, "trigger", {"event_name": "signup"}), (2, "send_template", {})]


def recommend_at(send_at):
    def _recommender(db, contact_id, reference_time):
        return (
            Recommendation(
                hour=0,
                send_at=send_at,
                score=0.1,
                baseline_score=0.05,
                reason="Global recommendation",
                throttled=False,
            ),
            None,
        )

    return _recommender


def failing_recommender(db, contact_id, reference_time):
    return None, "histograms unavailable"


def refreshed(db, run) -> FlowRun:
    db.expire_all()
    return db.get(FlowRun, run.id)


# =============================================================================
# next_step_order
# =============================================================================

def test_next_step_order_skips_gaps():
    steps = [FlowStep(order=order) for order in (1, 5, 10)]
    assert next_step_order(1, steps) == 5
    assert next_step_order(5, steps) == 10
    assert next_step_order(7, steps) == 10


def test_next_step_order_past_end_is_current_plus_one():
    steps = [FlowStep(order=order) for order in (1, 2)]
    assert next_step_order(2, steps) == 3


# =============================================================================
# Delay steps
# =============================================================================

def test_delay_step_waits(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (2, "delay", {"minutes": 45}), (3, "send_template", {})])
    run = make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.evaluated == 1
    assert summary.rescheduled == 1
    run = refreshed(db, run)
    assert run.status == FlowRunStatus.WAITING.value
    assert run.scheduled_at == now + timedelta(minutes=45)
    assert run.next_step_order == 3
    assert transport.sent == []


def test_zero_minute_delay_advances_within_tick(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (2, "delay", {"minutes": 0}), (3, "send_template", {})])
    run = make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.rescheduled == 0
    assert summary.completed == 1
    assert refreshed(db, run).status == FlowRunStatus.COMPLETED.value
    assert len(transport.sent) == 1


def test_delay_falls_back_to_flow_delay(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (2, "delay", {}), (3, "send_template", {})], delay_minutes=30)
    run = make_run(flow, make_contact(), next_step_order=2)

    process_due_flow_runs(db, now=now, transport=transport)

    assert refreshed(db, run).scheduled_at == now + timedelta(minutes=30)


def test_waiting_run_resumes_when_due(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (2, "delay", {"minutes": 10}), (3, "send_template", {})])
    run = make_run(flow, make_contact(), next_step_order=2)

    process_due_flow_runs(db, now=now, transport=transport)
    early = process_due_flow_runs(db, now=now + timedelta(minutes=5), transport=transport)
    due = process_due_flow_runs(db, now=now + timedelta(minutes=10), transport=transport)

    assert early.evaluated == 0
    assert due.completed == 1
    assert refreshed(db, run).status == FlowRunStatus.COMPLETED.value


# =============================================================================
# Segment filter steps
# =============================================================================

def test_segment_filter_cancels_non_member(db, make_contact, make_flow, make_run, make_segment, transport, now):
    segment = make_segment()
    flow = make_flow(
        [(1, "trigger", {}), (2, "segment_filter", {"segment_id": str(segment.id)}), (3, "send_template", {})]
    )
    run = make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.cancelled == 1
    run = refreshed(db, run)
    assert run.status == FlowRunStatus.CANCELLED.value
    assert run.cancelled_reason == CONTACT_NOT_IN_SEGMENT_REASON
    assert run.next_step_order == 2
    assert transport.sent == []


def test_segment_filter_passes_member(db, make_contact, make_flow, make_run, make_segment, transport, now):
    contact = make_contact()
    segment = make_segment(members=[contact])
    flow = make_flow([(1, "trigger", {}), (2, "segment_filter", {}), (3, "send_template", {})], segment_id=segment.id)
    run = make_run(flow, contact, next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.completed == 1
    assert refreshed(db, run).status == FlowRunStatus.COMPLETED.value


def test_segment_filter_without_segment_is_noop(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (2, "segment_filter", {}), (3, "send_template", {})])
    make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.completed == 1


# =============================================================================
# Send steps
# =============================================================================

def test_immediate_send_without_optimizer(db, make_contact, make_flow, make_run, transport, template, now):
    contact = make_contact(tags=["segment=trial", "vip"])
    flow = make_flow(SEND_ONLY, use_optimizer=False)
    run = make_run(flow, contact, next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.completed == 1
    assert transport.sent == [
        {
            "to": contact.email,
            "subject": template.subject,
            "html": template.html,
            "tags": {"tag_1": "segment=trial", "tag_2": "vip"},
        }
    ]
    message = db.query(Message).one()
    assert message.status == MessageStatus.SENT.value
    assert message.external_message_id == "msg_1"
    assert message.flow_run_id == run.id
    assert message.sent_at == now

    run = refreshed(db, run)
    assert run.status == FlowRunStatus.COMPLETED.value
    assert run.completed_at == now
    assert run.next_step_order == 3
    assert run.contact.last_message_sent_at == now


def test_send_step_template_override(db, make_contact, make_flow, make_run, transport, now):
    other = Template(name="Nudge", subject="Still there?", html="<p>Hi again</p>")
    db.add(other)
    db.commit()
    flow = make_flow([(1, "trigger", {}), (2, "send_template", {"template_id": str(other.id)})])
    make_run(flow, make_contact(), next_step_order=2)

    process_due_flow_runs(db, now=now, transport=transport)

    assert transport.sent[0]["subject"] == "Still there?"
    assert db.query(Message).one().template_id == other.id


def test_far_recommendation_schedules_message(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY, use_optimizer=True)
    run = make_run(flow, make_contact(), next_step_order=2)
    send_at = now + timedelta(hours=2)

    summary = process_due_flow_runs(db, now=now, transport=transport, recommender=recommend_at(send_at))

    assert summary.completed == 1
    assert transport.sent == []
    message = db.query(Message).one()
    assert message.status == MessageStatus.SCHEDULED.value
    assert message.scheduled_send_at == send_at
    assert message.sent_at is None
    run = refreshed(db, run)
    assert run.status == FlowRunStatus.COMPLETED.value
    assert run.next_step_order == 3
    assert run.contact.last_message_sent_at is None


def test_near_recommendation_sends_now(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY, use_optimizer=True)
    make_run(flow, make_contact(), next_step_order=2)

    process_due_flow_runs(
        db, now=now, transport=transport, recommender=recommend_at(now + timedelta(minutes=5))
    )

    assert len(transport.sent) == 1
    assert db.query(Message).one().status == MessageStatus.SENT.value


def test_optimizer_failure_falls_back_to_immediate_send(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY, use_optimizer=True)
    run = make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport, recommender=failing_recommender)

    assert summary.completed == 1
    assert summary.failed == 0
    assert len(transport.sent) == 1
    assert refreshed(db, run).status == FlowRunStatus.COMPLETED.value


def test_decision_write_failure_still_sends(db, make_contact, make_flow, make_run, transport, now):
    db.execute(
        text(
            "CREATE TRIGGER reject_decisions BEFORE INSERT ON optimizer_decisions "
            "BEGIN SELECT RAISE(ABORT, 'decision store unavailable'); END"
        )
    )
    db.commit()
    flow = make_flow(SEND_ONLY, use_optimizer=True)
    run = make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.completed == 1
    assert summary.failed == 0
    assert len(transport.sent) == 1
    assert refreshed(db, run).status == FlowRunStatus.COMPLETED.value
    assert db.query(Message).one().status == MessageStatus.SENT.value
    assert db.query(OptimizerDecision).count() == 0


def test_default_optimizer_schedules_for_best_hour(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY, use_optimizer=True)
    make_run(flow, make_contact(), next_step_order=2)

    process_due_flow_runs(db, now=now, transport=transport)

    # No history: every hour ties and the first (Sunday 00:00 UTC) wins
    message = db.query(Message).one()
    assert message.status == MessageStatus.SCHEDULED.value
    assert message.scheduled_send_at.isoformat() == "2024-03-10T00:00:00+00:00"


def test_contact_without_email_is_cancelled(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    run = make_run(flow, make_contact(email=None), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.cancelled == 1
    run = refreshed(db, run)
    assert run.status == FlowRunStatus.CANCELLED.value
    assert run.cancelled_reason == "Contact missing email"
    assert db.query(Message).count() == 0


def test_inactive_contact_is_cancelled(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    run = make_run(flow, make_contact(status=ContactStatus.BOUNCED.value), next_step_order=2)

    process_due_flow_runs(db, now=now, transport=transport)

    run = refreshed(db, run)
    assert run.status == FlowRunStatus.CANCELLED.value
    assert run.cancelled_reason == "Contact status is bounced"
    assert transport.sent == []


def test_transport_failure_fails_run_and_batch_continues(
    db, make_contact, make_flow, make_run, failing_transport, now
):
    flow = make_flow(SEND_ONLY)
    first = make_run(flow, make_contact(), next_step_order=2, scheduled_at=now - timedelta(minutes=2))
    second = make_run(flow, make_contact(email=None), next_step_order=2, scheduled_at=now - timedelta(minutes=1))

    summary = process_due_flow_runs(db, now=now, transport=failing_transport)

    assert summary.evaluated == 2
    assert summary.failed == 1
    assert summary.cancelled == 1
    first = refreshed(db, first)
    assert first.status == FlowRunStatus.FAILED.value
    assert first.cancelled_reason == "Resend rejected the request"
    assert refreshed(db, second).status == FlowRunStatus.CANCELLED.value
    assert db.query(Message).count() == 0


def test_unexpected_error_fails_run(db, make_contact, make_flow, make_run, transport, now):
    missing_template = uuid.uuid4()
    flow = make_flow([(1, "trigger", {}), (2, "send_template", {"template_id": str(missing_template)})])
    run = make_run(flow, make_contact(), next_step_order=2)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.failed == 1
    run = refreshed(db, run)
    assert run.status == FlowRunStatus.FAILED.value
    assert str(missing_template) in run.cancelled_reason


# =============================================================================
# Step walking and due-run selection
# =============================================================================

def test_pointer_past_last_step_completes(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    run = make_run(flow, make_contact(), next_step_order=3)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.completed == 1
    run = refreshed(db, run)
    assert run.status == FlowRunStatus.COMPLETED.value
    assert run.next_step_order == 3
    assert transport.sent == []


def test_trigger_step_is_walked_past(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    make_run(flow, make_contact(), next_step_order=1)

    process_due_flow_runs(db, now=now, transport=transport)

    assert len(transport.sent) == 1


def test_step_orders_with_gaps(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (5, "delay", {"minutes": 0}), (10, "send_template", {})])
    run = make_run(flow, make_contact(), next_step_order=5)

    process_due_flow_runs(db, now=now, transport=transport)

    run = refreshed(db, run)
    assert run.status == FlowRunStatus.COMPLETED.value
    assert run.next_step_order == 11


def test_only_due_open_runs_are_selected(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    contact = make_contact()
    make_run(flow, contact, next_step_order=2, scheduled_at=now + timedelta(minutes=1))
    make_run(flow, contact, next_step_order=2, status=FlowRunStatus.COMPLETED.value)
    make_run(flow, contact, next_step_order=2, status=FlowRunStatus.FAILED.value)
    due = make_run(flow, contact, next_step_order=2, status=FlowRunStatus.WAITING.value)

    summary = process_due_flow_runs(db, now=now, transport=transport)

    assert summary.evaluated == 1
    assert refreshed(db, due).status == FlowRunStatus.COMPLETED.value


def test_limit_takes_oldest_runs_first(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow([(1, "trigger", {}), (2, "delay", {"minutes": 60}), (3, "send_template", {})])
    contact = make_contact()
    newest = make_run(flow, contact, next_step_order=2, scheduled_at=now - timedelta(minutes=1))
    oldest = make_run(flow, contact, next_step_order=2, scheduled_at=now - timedelta(minutes=30))

    summary = process_due_flow_runs(db, now=now, limit=1, transport=transport)

    assert summary.evaluated == 1
    assert refreshed(db, oldest).status == FlowRunStatus.WAITING.value
    assert refreshed(db, newest).status == FlowRunStatus.PENDING.value


def test_zero_limit_processes_nothing(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    contact = make_contact()
    runs = [make_run(flow, contact, next_step_order=2) for _ in range(3)]

    summary = process_due_flow_runs(db, now=now, limit=0, transport=transport)

    assert summary.evaluated == 0
    assert transport.sent == []
    assert all(refreshed(db, run).status == FlowRunStatus.PENDING.value for run in runs)


def test_completed_run_is_never_sent_twice(db, make_contact, make_flow, make_run, transport, now):
    flow = make_flow(SEND_ONLY)
    make_run(flow, make_contact(), next_step_order=2)

    process_due_flow_runs(db, now=now, transport=transport)
    second = process_due_flow_runs(db, now=now + timedelta(hours=1), transport=transport)

    assert second.evaluated == 0
    assert len(transport.sent) == 1


@pytest.mark.parametrize("status", [FlowRunStatus.CANCELLED, FlowRunStatus.FAILED])
def test_terminal_runs_are_skipped(db, make_contact, make_flow, make_run, transport, now, status):
    flow = make_flow(SEND_ONLY)
    make_run(flow, make_contact(), next_step_order=2, status=status.value)

    assert process_due_flow_runs(db, now=now, transport=transport).evaluated == 0
