"""Shared pytest fixtures for beanpole tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from beanpole.config import Settings
from tests._factory import FakeIssueSource, make_issue


@pytest.fixture
def source() -> FakeIssueSource:
    """Store pre-populated with a representative hierarchy.

    Creates:
    - Milestone m1 > epic e1 > feature f1 > task t1 (in-progress)
    - Bug b1 under e1 (critical, tagged "auth")
    - Root task t2 (completed)
    """
    return FakeIssueSource(
        [
            make_issue("proj-m1", title="Launch", type="milestone", priority="high"),
            make_issue("proj-e1", title="Accounts", type="epic", parent="proj-m1"),
            make_issue("proj-f1", title="Login form", type="feature", parent="proj-e1"),
            make_issue("proj-t1", title="Wire submit button", status="in-progress", parent="proj-f1", tags=["ui"]),
            make_issue(
                "proj-b1",
                title="Session expires early",
                type="bug",
                priority="critical",
                parent="proj-e1",
                tags=["auth"],
                body="Tokens are dropped after a minute.",
            ),
            make_issue("proj-t2", title="Write changelog", status="completed", priority="low"),
        ]
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(workspace_root=tmp_path, cli_path="beans", timeout=1.0)


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_beanpole_logger() -> Generator[None, None, None]:
    """Detach file handlers added by setup_logging so tests stay isolated."""
    yield
    logger = logging.getLogger("beanpole")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
