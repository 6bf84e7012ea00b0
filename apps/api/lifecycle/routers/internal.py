"""
Internal endpoints for scheduled/cron operations, event ingestion,
provider delivery events and send-time recommendations.

Protected by X-Internal-Secret header.
Call from an external scheduler; at most one process-flows tick may run at a time.
"""
from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from lifecycle.core.config import settings
from lifecycle.core.deps import get_db, get_mail_transport
from lifecycle.core.errors import InvalidDefinitionError, NotFoundError
from lifecycle.core.security import verify_secret
from lifecycle.schemas.flow import ContactEventRequest, ProcessFlowsRequest
from lifecycle.schemas.job import EventIngestResponse, HygieneSweepRequest, JobResponse
from lifecycle.schemas.optimizer import (
    OptimizerDecisionListResponse,
    OptimizerDecisionRead,
    RecommendationResponse,
    RecommendRequest,
)
from lifecycle.schemas.outcome import ProviderEventRequest, ProviderEventResponse
from lifecycle.services import (
    event_service,
    flow_engine,
    hygiene_service,
    optimizer_service,
    outcome_service,
)
from lifecycle.services.mail_transport import MailTransport


router = APIRouter(prefix="/internal", tags=["internal"])


def verify_internal_secret(x_internal_secret: str | None) -> None:
    """Verify the internal secret header."""
    if not settings.INTERNAL_SECRET:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not verify_secret(x_internal_secret, settings.INTERNAL_SECRET):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


@router.post("/scheduled/process-flows", response_model=JobResponse)
def process_flows(
    body: ProcessFlowsRequest | None = Body(None),
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
    transport: MailTransport = Depends(get_mail_transport),
):
    """Run one flow scheduler tick over due runs."""
    verify_internal_secret(x_internal_secret)
    body = body or ProcessFlowsRequest()

    summary = flow_engine.process_due_flow_runs(
        db,
        now=body.now,
        limit=body.limit,
        transport=transport,
    )
    return JobResponse(success=True, message="Flow runs processed", summary=asdict(summary))


@router.post("/scheduled/hygiene-sweep", response_model=JobResponse)
def hygiene_sweep(
    body: HygieneSweepRequest | None = Body(None),
    suppress: bool | None = Query(None),
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """
    Score every contact's deliverability risk.

    `?suppress=false` (or `suppress_high_risk: false`) records evaluations
    without suppressing anyone.
    """
    verify_internal_secret(x_internal_secret)
    body = body or HygieneSweepRequest()
    suppress_high_risk = suppress if suppress is not None else body.suppress_high_risk

    summary = hygiene_service.run_hygiene_sweep(
        db,
        suppress_high_risk=suppress_high_risk,
        limit=body.limit,
    )
    return JobResponse(success=True, message="Hygiene sweep complete", summary=asdict(summary))


@router.post("/events", response_model=EventIngestResponse)
def ingest_event(
    body: ContactEventRequest,
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """Record a behavioral event and start any flows it triggers."""
    verify_internal_secret(x_internal_secret)
    try:
        result = event_service.record_contact_event(
            db,
            event_name=body.event_name,
            contact_id=body.contact_id,
            contact_email=body.contact_email,
            external_user_id=body.external_user_id,
            occurred_at=body.occurred_at,
            properties=body.properties,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidDefinitionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return EventIngestResponse(
        success=True,
        event_id=str(result.event_id),
        contact_id=str(result.contact_id),
        created_runs=result.trigger.created_runs,
        skipped_flows=result.trigger.skipped_flows,
    )


@router.post("/scheduled/poll-email-status", response_model=JobResponse)
def poll_email_status(
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """Settle delivery outcomes of recently sent messages."""
    verify_internal_secret(x_internal_secret)
    summary = outcome_service.poll_pending_messages(db)
    return JobResponse(success=True, message="Email status polled", summary=asdict(summary))


@router.post("/webhooks/resend", response_model=ProviderEventResponse)
def resend_event(
    body: ProviderEventRequest,
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """Apply a relayed provider delivery event. Unhandled events still return 200."""
    verify_internal_secret(x_internal_secret)
    result = outcome_service.process_provider_event(db, body.type, body.data)
    return ProviderEventResponse(
        success=True,
        handled=result.handled,
        message_id=result.message_id,
        outcome=result.outcome.value if result.outcome else None,
        reason=result.reason,
    )


@router.post("/optimizer/recommend", response_model=RecommendationResponse)
def recommend(
    body: RecommendRequest,
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """Recommend a send time for one contact and record the decision."""
    verify_internal_secret(x_internal_secret)
    try:
        recommendation = optimizer_service.recommend_send_time(db, body.contact_id, body.reference_time)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()

    return RecommendationResponse(
        success=True,
        contact_id=body.contact_id,
        hour=recommendation.hour,
        send_at=recommendation.send_at,
        score=recommendation.score,
        baseline_score=recommendation.baseline_score,
        reason=recommendation.reason,
        throttled=recommendation.throttled,
        segment=recommendation.segment,
    )


@router.get("/optimizer/decisions", response_model=OptimizerDecisionListResponse)
def list_optimizer_decisions(
    contact_id: UUID | None = Query(None),
    limit: int = Query(optimizer_service.DEFAULT_DECISION_LIMIT),
    x_internal_secret: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """Recent optimizer decisions, newest first (limit clamped to 1..100)."""
    verify_internal_secret(x_internal_secret)
    decisions = optimizer_service.list_decisions(db, contact_id=contact_id, limit=limit)

    items = []
    for decision in decisions:
        rationale = decision.rationale or {}
        recommended_at = rationale.get("recommended_at")
        segment = rationale.get("segment")
        items.append(
            OptimizerDecisionRead(
                id=decision.id,
                contact_id=decision.contact_id,
                contact_email=decision.contact.email if decision.contact else None,
                contact_tags=list(decision.contact.tags or []) if decision.contact else [],
                recommended_hour=decision.recommended_hour,
                score=decision.score,
                baseline_score=decision.baseline_score,
                segment=segment if isinstance(segment, str) else "global",
                throttled=bool(rationale.get("throttled")),
                recommended_at=recommended_at if isinstance(recommended_at, str) else None,
                created_at=decision.created_at,
            )
        )
    return OptimizerDecisionListResponse(success=True, decisions=items)
