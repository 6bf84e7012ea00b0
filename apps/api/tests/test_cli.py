"""Tests for the CLI commands."""
import uuid

import pytest
from click.testing import CliRunner
from sqlalchemy.orm import sessionmaker

from lifecycle import cli as cli_module
from lifecycle.db.models import Contact, OptimizerDecision


@pytest.fixture
def runner(engine, monkeypatch) -> CliRunner:
    monkeypatch.setattr(cli_module, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine))
    return CliRunner()


def test_seed_test_contacts(runner, db):
    result = runner.invoke(cli_module.cli, ["seed-test-contacts"])

    assert result.exit_code == 0, result.output
    assert "228 created, 0 updated" in result.output
    assert "bounced: 20" in result.output
    assert db.query(Contact).count() == 228


def test_recommend_records_decision(runner, db, make_contact):
    contact = make_contact()

    result = runner.invoke(cli_module.cli, ["recommend", str(contact.id)])

    assert result.exit_code == 0, result.output
    assert "Hour of week: 0" in result.output
    assert db.query(OptimizerDecision).count() == 1


def test_recommend_unknown_contact(runner):
    result = runner.invoke(cli_module.cli, ["recommend", str(uuid.uuid4())])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_hygiene_sweep_without_suppression(runner, make_contact):
    make_contact()

    result = runner.invoke(cli_module.cli, ["hygiene-sweep", "--no-suppress"])

    assert result.exit_code == 0, result.output
    assert "evaluated: 1" in result.output


def test_poll_email_status_with_no_messages(runner):
    result = runner.invoke(cli_module.cli, ["poll-email-status"])

    assert result.exit_code == 0, result.output
    assert "Email status polled" in result.output
    assert "total_checked: 0" in result.output
