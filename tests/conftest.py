"""
Pytest fixtures for the payroll sync test suite.

Provides:
- Structured logging configured once per session, with LogContext cleared
  between tests
- In-memory SQLite engine, sessions and a session factory sharing one
  connection (services never commit; the retry processor does)
- Deterministic clock, transformation registry and a sample contribution
  rule set
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import payroll_errors.models  # noqa: F401
import payroll_mapping.models  # noqa: F401
from payroll_kernel.db.base import Base
from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payroll_mapping.domain.types import (
    CalculatedField,
    ConditionalAssignment,
    ConditionalMapping,
    DefaultValue,
    FieldMapping,
    LookupMapping,
    MappingRules,
    MappingRuleSet,
    MappingType,
    Rounding,
)
from payroll_mapping.transformations import default_registry

FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
ORG_ID = "org-acme"


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
    Capture payroll logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.execute(rule_set, records)
            logs = captured_logs()
            assert any(r["message"] == "mapping_batch_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payroll")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite engine; every session shares the one connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def contribution_rule_set() -> MappingRuleSet:
    """Contribution mapping touching every rule category."""
    return MappingRuleSet(
        id="acme-contributions",
        source_system="acme_payroll",
        destination_system="recordkeeper",
        mapping_type=MappingType.CONTRIBUTION,
        rules=MappingRules(
            field_mappings=(
                FieldMapping("ssn", "participant_ssn", "format_ssn", required=True),
                FieldMapping("pretax", "employee_pre_tax", "to_cents", required=True),
                FieldMapping("roth", "employee_roth", "to_cents"),
            ),
            conditional_mappings=(
                ConditionalMapping(
                    "source.catch_up == true",
                    (ConditionalAssignment("catch_up_flag", "Y"),),
                ),
            ),
            calculated_fields=(
                CalculatedField(
                    "total_contribution",
                    "dest.employee_pre_tax + dest.employee_roth",
                    Rounding.CENTS,
                ),
            ),
            lookup_mappings=(
                LookupMapping(
                    "division", {"EAST": "PLAN-E", "WEST": "PLAN-W"}, "plan_id",
                ),
            ),
            default_values=(DefaultValue("catch_up_flag", "N"),),
        ),
    )
