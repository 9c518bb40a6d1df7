"""
Pytest fixtures for the distribution kernel test suite.

Provides:
- Structured logging fixtures (``captured_logs``)
- Deterministic clock and default configuration
- Database sessions (in-memory SQLite by default)
- A registered territory and gateway/editor factories

Environment Variables:
- DATABASE_URL: database URL for the persistence tests.  Defaults to
  in-memory SQLite; set a postgresql+psycopg:// URL to run against
  PostgreSQL.
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO

import pytest

from distribution_kernel.config import DistributionConfig
from distribution_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from distribution_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from distribution_kernel.domain.clock import DeterministicClock
from distribution_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from distribution_kernel.services.distribution_editor import DistributionEditor
from distribution_kernel.services.persistence_gateway import SqlPersistenceGateway

CONTROLLER_ID = "user-controller"
EDITOR_ID = "user-delegate"
VIEWER_ID = "user-viewer"
OUTSIDER_ID = "user-outsider"
SYSTEM_ACTOR_ID = "system-settlement"
TERRITORY_ID = "territory-42"

# Hour-aligned, matches DeterministicClock's default
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture distribution_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, store):
            store.create_profile("x")
            logs = captured_logs()
            assert any(r["message"] == "profile_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("distribution_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(NOW)


@pytest.fixture
def config() -> DistributionConfig:
    return DistributionConfig.with_defaults()


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """One engine per test session; tables are recreated per test."""
    engine = init_engine_from_url(get_database_url())
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session(db_engine):
    """Fresh schema and session per test."""
    drop_tables()
    create_tables()
    s = get_session()
    yield s
    s.rollback()
    s.close()
    drop_tables()


@pytest.fixture
def gateway_factory(session, clock, config):
    """Build a gateway bound to ``actor_id``, sharing the test session and clock."""

    def _make(actor_id: str = CONTROLLER_ID) -> SqlPersistenceGateway:
        return SqlPersistenceGateway(session, actor_id=actor_id, clock=clock, config=config)

    return _make


@pytest.fixture
def gateway(gateway_factory) -> SqlPersistenceGateway:
    return gateway_factory(CONTROLLER_ID)


@pytest.fixture
def territory(gateway_factory):
    """A territory controlled by CONTROLLER_ID inside alliance 'a-home' (sync 5%)."""
    setup = gateway_factory(SYSTEM_ACTOR_ID)
    return setup.register_territory(
        TERRITORY_ID,
        controller_user_id=CONTROLLER_ID,
        alliance_id="a-home",
        alliance_name="Home Alliance",
        alliance_sync_percent="5",
        hostile_alliance_ids=["a-enemy"],
        editor_user_ids=[EDITOR_ID],
        viewer_user_ids=[VIEWER_ID],
    )


@pytest.fixture
def editor_factory(gateway_factory, clock, config, territory):
    """Loaded editor for ``actor_id`` on the registered territory."""

    def _make(actor_id: str = CONTROLLER_ID) -> DistributionEditor:
        editor = DistributionEditor(
            gateway_factory(actor_id), TERRITORY_ID, clock=clock, config=config
        )
        editor.load()
        return editor

    return _make


@pytest.fixture
def editor(editor_factory) -> DistributionEditor:
    return editor_factory(CONTROLLER_ID)
