"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    job: str | None = None,
    flow_id: UUID | str | None = None,
    run_id: UUID | str | None = None,
    contact_id: UUID | str | None = None,
    message_id: UUID | str | None = None,
    step_order: int | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict.

    Only identifiers are accepted; email addresses never enter log records.
    """
    context: dict[str, Any] = {}
    if job:
        context["job"] = job
    if flow_id:
        context["flow_id"] = str(flow_id)
    if run_id:
        context["run_id"] = str(run_id)
    if contact_id:
        context["contact_id"] = str(contact_id)
    if message_id:
        context["message_id"] = str(message_id)
    if step_order is not None:
        context["step_order"] = step_order
    return context
