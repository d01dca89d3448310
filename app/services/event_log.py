"""
Event log store adapter.

Turns ``OperatorEvent`` rows into immutable ``WorkEvent`` snapshots for the
consolidation pipeline and exposes the one write the pipeline is allowed to
make on the log: rewriting the ``created_at`` of a single event whose
captured time collapsed to midnight.

Functions:
    - derive_occurred_at:       best-available timestamp of an event
    - to_snapshot:              OperatorEvent -> WorkEvent
    - load_events:              every snapshot for (operator, launch)
    - rewrite_event_timestamp:  narrow repair write on one event
    - as_utc / sort_key:        timezone-safe ordering helpers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timezone

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.operator_event import (
    KIND_FINISH,
    KIND_START,
    TERMINAL_STATUSES,
    OperatorEvent,
)
from app.services.helpers.store_retry import run_with_store_retry
from app.utils.helpers import parse_clock_time

logger = logging.getLogger(__name__)

_MIDNIGHT = time(0, 0)


@dataclass(frozen=True)
class WorkEvent:
    """Read-only view of one lifecycle event.

    ``event_id`` is the insertion sequence; it is None for events synthesized
    in memory by the auto-repair step.
    """

    event_id: int | None
    operator_code: str
    launch_code: str
    kind: str
    occurred_at: datetime
    event_date: date
    phase: str | None = None
    sub_code: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    event_time: str | None = None
    explicit_start_time: str | None = None
    explicit_finish_time: str | None = None
    synthetic: bool = False

    @property
    def work_date(self) -> date:
        return self.event_date or self.occurred_at.date()

    @property
    def has_terminal_status(self) -> bool:
        return (self.status or "").strip().upper() in TERMINAL_STATUSES

    @property
    def explicit_time(self) -> str | None:
        """The operator-typed clock time relevant to this kind, if any."""
        if self.kind == KIND_START:
            return self.explicit_start_time
        if self.kind == KIND_FINISH:
            return self.explicit_finish_time
        return None

    def evolve(self, **changes) -> "WorkEvent":
        return replace(self, **changes)


def as_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sort_key(event: WorkEvent) -> tuple:
    """Ordering key (occurred_at, insertion sequence); synthetic events sort last on ties."""
    seq = event.event_id if event.event_id is not None else float("inf")
    return (as_utc(event.occurred_at), seq)


def is_midnight_collapsed(created_at: datetime | None) -> bool:
    return created_at is not None and created_at.time() == _MIDNIGHT


def derive_occurred_at(
    *,
    kind: str,
    event_date: date,
    created_at: datetime | None = None,
    event_time: str | None = None,
    explicit_start_time: str | None = None,
    explicit_finish_time: str | None = None,
) -> datetime:
    """Best-available timestamp of an event.

    ``created_at`` wins unless it sits exactly on midnight while a clock time
    is available (a full timestamp filled from a date-only column). The
    fallback is ``event_date`` combined with ``event_time``, then the explicit
    clock time for START / FINISH, then midnight.
    """
    explicit = explicit_start_time if kind == KIND_START else (
        explicit_finish_time if kind == KIND_FINISH else None
    )
    clock = parse_clock_time(event_time) or parse_clock_time(explicit)

    if created_at is not None and not (is_midnight_collapsed(created_at) and clock):
        return created_at
    base_date = event_date or (created_at.date() if created_at else None)
    if base_date is None:
        raise ValueError("event has neither event_date nor created_at")
    return datetime.combine(base_date, clock or _MIDNIGHT)


def to_snapshot(row: OperatorEvent) -> WorkEvent:
    return WorkEvent(
        event_id=row.id,
        operator_code=row.operator_code,
        launch_code=row.launch_code,
        kind=(row.kind or "").upper(),
        occurred_at=derive_occurred_at(
            kind=(row.kind or "").upper(),
            event_date=row.event_date,
            created_at=row.created_at,
            event_time=row.event_time,
            explicit_start_time=row.explicit_start_time,
            explicit_finish_time=row.explicit_finish_time,
        ),
        event_date=row.event_date or (row.created_at.date() if row.created_at else None),
        phase=row.phase,
        sub_code=row.sub_code,
        status=row.status,
        created_at=row.created_at,
        event_time=row.event_time,
        explicit_start_time=row.explicit_start_time,
        explicit_finish_time=row.explicit_finish_time,
    )


def load_events(operator_code: str, launch_code: str) -> list[WorkEvent]:
    """Return every event of (operator, launch), unordered semantics aside from id.

    Callers sort with ``sort_key``; the store order is not trusted.
    """
    stmt = (
        select(OperatorEvent)
        .where(
            OperatorEvent.operator_code == operator_code,
            OperatorEvent.launch_code == launch_code,
        )
        .order_by(OperatorEvent.id)
    )
    rows = run_with_store_retry(
        lambda: db.session.execute(stmt).scalars().all(),
        operation="load_events",
    )
    return [to_snapshot(row) for row in rows]


def rewrite_event_timestamp(event_id: int, value: datetime) -> dict:
    """Rewrite ``created_at`` on one event. The caller owns the commit.

    Only used to correct a midnight-collapsed capture; every other column of
    the event log stays read-only.

    Raises:
        NotFoundError: unknown event id.
    """
    row = db.session.get(OperatorEvent, event_id)
    if row is None:
        raise NotFoundError(resource="OperatorEvent", resource_id=event_id)
    previous = row.created_at
    row.created_at = value
    db.session.flush()
    logger.info(
        "Operator event timestamp rewritten",
        extra={
            "event_id": event_id,
            "operator_code": row.operator_code,
            "launch_code": row.launch_code,
        },
    )
    return {
        "event_id": event_id,
        "old": previous.isoformat() if previous else None,
        "new": value.isoformat(),
    }
