"""
Duration calculation for operator work cycles.

Single source of truth for total / pause / productive minutes. Used by the
consolidation service, the timestamp repair path and the maintenance
scripts so every consumer agrees on the numbers.

Rules:
    total       FINISH - START. When START carries an explicit start clock
                time and FINISH an explicit finish clock time, both are laid
                on START's calendar date and an end earlier than the start
                rolls over to the next day (night shift). Otherwise the
                best-available event timestamps are used.
    pause       PAUSE[i] -> RESUME[i] for i < min(#pauses, #resumes), each
                list sorted chronologically. A trailing PAUSE without RESUME
                adds nothing.
    productive  max(0, total - pause)

All values are whole minutes (floor of the elapsed time).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from app.models.operator_event import KIND_FINISH, KIND_PAUSE, KIND_RESUME, KIND_START
from app.services.event_log import WorkEvent, as_utc, sort_key
from app.utils.helpers import parse_clock_time

_ONE_MINUTE = timedelta(minutes=1)

METHOD_CLOCK_TIMES = "clock_times"
METHOD_TIMESTAMPS = "timestamps"


@dataclass(frozen=True)
class Durations:
    total_min: int = 0
    pause_min: int = 0
    productive_min: int = 0
    count: int = 0
    method: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat() if self.start_time else None
        data["end_time"] = self.end_time.isoformat() if self.end_time else None
        return data


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end`` (floored, may be negative)."""
    if (start.tzinfo is None) != (end.tzinfo is None):
        start, end = as_utc(start), as_utc(end)
    return (end - start) // _ONE_MINUTE


def productive_minutes(total_min: int, pause_min: int) -> int:
    return max(0, total_min - pause_min)


def _clock_window(start_event: WorkEvent, finish_event: WorkEvent) -> tuple[datetime, datetime] | None:
    start_clock = parse_clock_time(start_event.explicit_start_time)
    finish_clock = parse_clock_time(finish_event.explicit_finish_time)
    if start_clock is None or finish_clock is None:
        return None
    day = start_event.occurred_at.date()
    start_dt = datetime.combine(day, start_clock)
    end_dt = datetime.combine(day, finish_clock)
    if end_dt < start_dt:
        end_dt += timedelta(days=1)
    return start_dt, end_dt


def pause_minutes(events: Iterable[WorkEvent]) -> int:
    """Sum of positionally paired PAUSE -> RESUME gaps, in chronological order."""
    ordered = sorted(events, key=sort_key)
    pauses = [e for e in ordered if e.kind == KIND_PAUSE]
    resumes = [e for e in ordered if e.kind == KIND_RESUME]
    total = 0
    for pause, resume in zip(pauses, resumes):
        total += max(0, minutes_between(pause.occurred_at, resume.occurred_at))
    return total


def compute_durations(events: Iterable[WorkEvent], *, as_of: datetime | None = None) -> Durations:
    """Compute durations of one cycle.

    Args:
        events: The cycle's events, any order.
        as_of: End of measurement for an open cycle (no FINISH). Defaults to
            now in UTC. Consolidation never passes open cycles.

    Returns:
        Durations with all-zero minutes when the cycle has no START.
    """
    ordered = sorted(events, key=sort_key)
    count = len(ordered)
    start_event = next((e for e in ordered if e.kind == KIND_START), None)
    if start_event is None:
        return Durations(count=count)

    finish_event = next((e for e in ordered if e.kind == KIND_FINISH), None)
    if finish_event is not None:
        window = _clock_window(start_event, finish_event)
        if window is not None:
            start_dt, end_dt = window
            method = METHOD_CLOCK_TIMES
        else:
            start_dt, end_dt = start_event.occurred_at, finish_event.occurred_at
            method = METHOD_TIMESTAMPS
    else:
        start_dt = start_event.occurred_at
        end_dt = as_of or datetime.now(timezone.utc)
        method = METHOD_TIMESTAMPS

    total = minutes_between(start_dt, end_dt)
    pause = pause_minutes(ordered)
    return Durations(
        total_min=total,
        pause_min=pause,
        productive_min=productive_minutes(total, pause),
        count=count,
        method=method,
        start_time=start_dt,
        end_time=end_dt if finish_event is not None else None,
    )
