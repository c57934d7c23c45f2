"""
Pytest fixtures for the back-office engine test suite.

Provides:
- A file-backed SQLite database per test (tables created fresh)
- DeterministicClock, a test config and a bootstrapped tenant
- A BackOfficeEngine wired to all of the above
- Structured log capture

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead
  of the per-test SQLite file. The database must be empty.
"""

import json
import logging
import os
from io import StringIO
from typing import Callable
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from fieldops_config import get_active_config
from fieldops_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from fieldops_kernel.domain.clock import DeterministicClock
from fieldops_kernel.domain.events import EventBus
from fieldops_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fieldops_services.back_office import BackOfficeEngine, create_tenant

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


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
    Capture fieldops logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, back_office):
            back_office.create_quote(...)
            logs = captured_logs()
            assert any(r["message"] == "quote_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fieldops")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Fresh schema for each test."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'fieldops_test.db'}"
    engine = init_engine_from_url(url)
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Session:
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def test_config():
    """Default config without retry backoff, so conflict tests stay fast."""
    return get_active_config(overrides={"sequence": {"backoff_seconds": 0}})


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def tenant(session, test_config, clock):
    return create_tenant(session, "Acme Lawn Care", TEST_ACTOR_ID, config=test_config, clock=clock)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def back_office(session, tenant, test_config, clock, event_bus) -> BackOfficeEngine:
    return BackOfficeEngine(
        session, tenant.id, TEST_ACTOR_ID,
        config=test_config, clock=clock, event_bus=event_bus,
    )


@pytest.fixture
def make_back_office(session_factory, tenant, test_config, clock) -> Callable[..., BackOfficeEngine]:
    """
    Build a BackOfficeEngine on its own session, one per thread.

    Sessions opened here are closed at teardown.
    """
    opened: list[Session] = []

    def _make(max_attempts: int | None = None) -> BackOfficeEngine:
        config = test_config
        if max_attempts is not None:
            config = get_active_config(overrides={
                "sequence": {"backoff_seconds": 0.001, "max_attempts": max_attempts},
            })
        s = session_factory()
        opened.append(s)
        return BackOfficeEngine(s, tenant.id, TEST_ACTOR_ID, config=config, clock=clock)

    yield _make

    for s in opened:
        s.close()


@pytest.fixture
def client(back_office):
    """A client with one primary property."""
    return back_office.create_client(
        "Ada Lovelace",
        email="ada@example.com",
        phone="555-0100",
        billing_address="12 Analytical Way, London",
        properties=[
            {
                "uid": "prop-home",
                "label": "Home",
                "street1": "1 Main St",
                "city": "Springfield",
                "state": "IL",
                "zip": "62704",
                "country": "US",
                "is_primary": True,
            },
            {
                "uid": "prop-cabin",
                "label": "Cabin",
                "street1": "99 Lake Rd",
                "city": "Lakeside",
            },
        ],
    )


@pytest.fixture
def priced_draft(client):
    """Quote draft for the worked example: 2 x 50, 10% off, 15% tax."""
    return {
        "client_id": client.id,
        "title": "Spring cleanup",
        "line_items": [
            {"type": "line_item", "name": "Mowing", "qty": 2, "unit_price": "50"},
            {"type": "text", "description": "Includes green waste removal"},
        ],
        "quote_discount_type": "percent",
        "quote_discount_value": 10,
        "tax_rate": 15,
    }


@pytest.fixture
def approved_quote(back_office, priced_draft):
    quote = back_office.create_quote(priced_draft)
    back_office.send_quote(quote.id)
    return back_office.approve_quote(quote.id, "Ada Lovelace")
