"""CLI tools for lifecycle automation jobs."""

import logging
import sys
import uuid
from dataclasses import asdict

import click

from lifecycle.core.config import settings
from lifecycle.core.constants import OUTCOME_POLL_BATCH_SIZE
from lifecycle.core.errors import NotFoundError
from lifecycle.db.base import Base
from lifecycle.db.session import SessionLocal, engine
from lifecycle.services import (
    demo_contact_service,
    flow_engine,
    hygiene_service,
    optimizer_service,
    outcome_service,
)


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def _echo_summary(summary: dict) -> None:
    for key, value in summary.items():
        click.echo(f"  {key}: {value}")


@click.group()
def cli():
    """Lifecycle automation CLI tools."""
    _configure_logging()


@cli.command()
def init_db():
    """
    Create all tables on the configured database.

    Example:
        lifecycle init-db
    """
    import lifecycle.db.models  # noqa: F401  (register models on Base.metadata)

    Base.metadata.create_all(bind=engine)
    click.echo("✓ Database tables created")


@cli.command()
@click.option("--limit", type=int, default=None, help="Max runs to process (default: FLOW_BATCH_LIMIT)")
def process_flows(limit: int | None):
    """
    Run one scheduler tick over due flow runs.

    Do not run two ticks at the same time.
    """
    db = SessionLocal()
    try:
        summary = flow_engine.process_due_flow_runs(db, limit=limit)
        click.echo("✓ Flow runs processed")
        _echo_summary(asdict(summary))
    finally:
        db.close()


@cli.command()
@click.option("--suppress/--no-suppress", default=True, help="Suppress high-risk contacts (default: on)")
@click.option("--limit", type=int, default=None, help="Max contacts to evaluate")
def hygiene_sweep(suppress: bool, limit: int | None):
    """Score every contact's deliverability risk and suppress high-risk ones."""
    db = SessionLocal()
    try:
        summary = hygiene_service.run_hygiene_sweep(db, suppress_high_risk=suppress, limit=limit)
        click.echo("✓ Hygiene sweep complete")
        _echo_summary(asdict(summary))
    finally:
        db.close()


@cli.command()
@click.option("--batch-size", type=int, default=OUTCOME_POLL_BATCH_SIZE, help="Max messages to check")
def poll_email_status(batch_size: int):
    """Settle delivery outcomes of messages sent in the last two hours."""
    db = SessionLocal()
    try:
        summary = outcome_service.poll_pending_messages(db, batch_size=batch_size)
        click.echo("✓ Email status polled")
        _echo_summary(asdict(summary))
    finally:
        db.close()


@cli.command()
@click.argument("contact_id", type=click.UUID)
def recommend(contact_id: uuid.UUID):
    """Recommend a send time for one contact and record the decision."""
    db = SessionLocal()
    try:
        recommendation = optimizer_service.recommend_send_time(db, contact_id)
        db.commit()
    except NotFoundError as e:
        db.rollback()
        click.echo(f"❌ {e}")
        sys.exit(1)
    finally:
        db.close()

    if recommendation.hour is None:
        click.echo(f"→ {recommendation.reason}")
        return
    click.echo(f"✓ Hour of week: {recommendation.hour}")
    click.echo(f"  Send at: {recommendation.send_at.isoformat()}")
    click.echo(f"  Score: {recommendation.score:.4f} (baseline {recommendation.baseline_score:.4f})")
    click.echo(f"  Reason: {recommendation.reason}")


@cli.command()
def seed_test_contacts():
    """Create or refresh the demo contact list (delivered/bounced/suppressed/complained)."""
    specs = demo_contact_service.generate_test_contact_specs()
    db = SessionLocal()
    try:
        result = demo_contact_service.upsert_test_contacts(db, specs)
    finally:
        db.close()

    click.echo(f"✓ Test contacts ready: {result.created} created, {result.updated} updated")
    _echo_summary(demo_contact_service.summarize_outcome_counts(specs))


if __name__ == "__main__":
    cli()
