"""
Test configuration and fixtures.

Provides:
- SQLite in-memory database (fresh schema per test)
- Factory fixtures for contacts, templates, segments and flows
- In-memory mail transport
- HTTPX AsyncClient bound to the app with the test session injected
"""
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from lifecycle.core.config import settings
from lifecycle.core.deps import get_db, get_mail_transport
from lifecycle.db.base import Base
from lifecycle.db.enums import ContactStatus, FlowRunStatus, FlowStatus, FlowStepType
from lifecycle.db.models import (
    Contact,
    Flow,
    FlowRun,
    FlowStep,
    Message,
    MessageOutcome,
    Segment,
    SegmentMembership,
    Template,
)
from lifecycle.main import app
from lifecycle.services.histogram_service import reset_optimizer_cache
from lifecycle.services.mail_transport import MailTransportError, SendResult


NOW = datetime(2024, 3, 6, 15, 0, tzinfo=timezone.utc)  # Wednesday
TEST_INTERNAL_SECRET = "test-internal-secret"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    """SQLite in-memory engine shared across connections."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    """Session configured like the application's SessionLocal."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def now() -> datetime:
    """Fixed tick time (a Wednesday afternoon, UTC)."""
    return NOW


@pytest.fixture(autouse=True)
def clear_optimizer_cache():
    reset_optimizer_cache()
    yield
    reset_optimizer_cache()


# =============================================================================
# Mail Transport
# =============================================================================

@dataclass
class FakeTransport:
    """Records sends; raises `error` when set."""

    error: Exception | None = None
    sent: list[dict[str, Any]] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def send(self, *, to, subject, html, tags=None):
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html": html, "tags": tags})
        return SendResult(id=f"msg_{next(self._ids)}")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def failing_transport() -> FakeTransport:
    return FakeTransport(error=MailTransportError("Resend rejected the request", 422))


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_contact(db):
    counter = itertools.count(1)

    def _make(**overrides) -> Contact:
        n = next(counter)
        values = {
            "email": f"contact{n}@example.com",
            "status": ContactStatus.ACTIVE.value,
            "tags": [],
            "timezone": None,
            "propensity": 0.5,
        }
        values.update(overrides)
        contact = Contact(**values)
        db.add(contact)
        db.commit()
        db.refresh(contact)
        return contact

    return _make


@pytest.fixture
def template(db) -> Template:
    template = Template(name="Welcome", subject="Welcome aboard", html="<p>Hello</p>")
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@pytest.fixture
def make_segment(db):
    counter = itertools.count(1)

    def _make(members: list[Contact] = (), **overrides) -> Segment:
        values = {"name": f"segment-{next(counter)}", "definition": {"filters": []}}
        values.update(overrides)
        segment = Segment(**values)
        db.add(segment)
        db.flush()
        for contact in members:
            db.add(SegmentMembership(segment_id=segment.id, contact_id=contact.id))
        db.commit()
        db.refresh(segment)
        return segment

    return _make


@pytest.fixture
def make_flow(db, template):
    """Build a flow from (order, type, config) tuples."""

    def _make(steps, **overrides) -> Flow:
        values = {
            "name": "Onboarding",
            "status": FlowStatus.ACTIVE.value,
            "trigger_event_name": "signup",
            "template_id": template.id,
            "use_optimizer": False,
        }
        values.update(overrides)
        flow = Flow(**values)
        flow.steps = [
            FlowStep(order=order, type=FlowStepType(step_type).value, config=config or {})
            for order, step_type, config in steps
        ]
        db.add(flow)
        db.commit()
        db.refresh(flow)
        return flow

    return _make


@pytest.fixture
def make_run(db):
    def _make(flow: Flow, contact: Contact, next_step_order: int, **overrides) -> FlowRun:
        values = {
            "flow_id": flow.id,
            "contact_id": contact.id,
            "status": FlowRunStatus.PENDING.value,
            "next_step_order": next_step_order,
            "scheduled_at": NOW,
        }
        values.update(overrides)
        run = FlowRun(**values)
        db.add(run)
        db.commit()
        db.refresh(run)
        return run

    return _make


@pytest.fixture
def make_sent_message(db):
    """Sent message with an optional click, for histogram tests."""

    def _make(contact: Contact, sent_at: datetime, clicked: bool = False) -> Message:
        message = Message(contact_id=contact.id, status="sent", sent_at=sent_at)
        if clicked:
            message.outcome = MessageOutcome(clicked_at=sent_at, last_event="clicked")
        db.add(message)
        db.commit()
        db.refresh(message)
        return message

    return _make


# =============================================================================
# HTTP Client Fixtures
# =============================================================================

@pytest.fixture
def internal_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "INTERNAL_SECRET", TEST_INTERNAL_SECRET)
    return TEST_INTERNAL_SECRET


@pytest.fixture
async def client(db, transport) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX client using the test session and fake transport."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mail_transport] = lambda: transport

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
