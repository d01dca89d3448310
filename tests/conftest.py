"""
Shared pytest fixtures for the work time consolidation test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - add_event: Insert an OperatorEvent row
    - add_classification: Insert a LaunchClassification row
    - add_record: Insert a WorkTimeRecord row directly
"""

from datetime import date, datetime

import pytest

from app import create_app
from app.models import db as _db
from app.models.launch_classification import LaunchClassification
from app.models.operator_event import OperatorEvent
from app.models.work_time import WorkTimeRecord

WORK_DAY = date(2026, 3, 2)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def add_event():
    """Insert one operator event.

    ``at`` is "HH:MM" on ``event_date`` and becomes created_at; pass
    ``created_at=None`` explicitly to simulate a legacy date-only capture.
    """

    def _add(
        kind,
        at=None,
        *,
        operator_code="OP1",
        launch_code="LT100",
        phase="10",
        sub_code="R01",
        event_date=WORK_DAY,
        status=None,
        event_time=None,
        explicit_start_time=None,
        explicit_finish_time=None,
        **overrides,
    ):
        created_at = overrides.pop("created_at", "auto")
        if created_at == "auto":
            created_at = datetime.combine(event_date, datetime.strptime(at, "%H:%M").time()) if at else None
        row = OperatorEvent(
            operator_code=operator_code,
            launch_code=launch_code,
            kind=kind,
            phase=phase,
            sub_code=sub_code,
            status=status,
            event_date=event_date,
            event_time=event_time,
            created_at=created_at,
            explicit_start_time=explicit_start_time,
            explicit_finish_time=explicit_finish_time,
        )
        _db.session.add(row)
        _db.session.commit()
        return row

    return _add


@pytest.fixture()
def add_classification():
    def _add(launch_code="LT100", phase="20", sub_code="M05", **flags):
        row = LaunchClassification(launch_code=launch_code, phase=phase, sub_code=sub_code, **flags)
        _db.session.add(row)
        _db.session.commit()
        return row

    return _add


@pytest.fixture()
def add_record():
    """Insert a WorkTimeRecord bypassing consolidation (lifecycle tests)."""

    def _add(**overrides):
        values = {
            "operator_code": "OP1",
            "launch_code": "LT100",
            "phase": "10",
            "sub_code": "R01",
            "work_date": WORK_DAY,
            "start_time": datetime(2026, 3, 2, 9, 0),
            "end_time": datetime(2026, 3, 2, 12, 0),
            "total_duration_min": 180,
            "pause_duration_min": 15,
            "productive_duration_min": 165,
            "events_count": 4,
            "calculation_method": "timestamps",
        }
        values.update(overrides)
        row = WorkTimeRecord(**values)
        _db.session.add(row)
        _db.session.commit()
        return row

    return _add
