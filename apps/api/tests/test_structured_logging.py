"""Tests for PII-safe log context."""
import uuid

from lifecycle.core.structured_logging import build_log_context


def test_only_provided_values_are_included():
    run_id = uuid.uuid4()

    context = build_log_context(job="process_flows", run_id=run_id, step_order=0)

    assert context == {"job": "process_flows", "run_id": str(run_id), "step_order": 0}


def test_empty_context():
    assert build_log_context() == {}
    assert build_log_context(flow_id="", contact_id=None) == {}


def test_message_id_is_stringified():
    message_id = uuid.uuid4()

    assert build_log_context(job="poll_email_status", message_id=message_id) == {
        "job": "poll_email_status",
        "message_id": str(message_id),
    }
