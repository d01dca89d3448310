"""
Tests for cycle selection.

Covers:
  - latest START..FINISH span of the inferred scope
  - explicit scope hints (phase, sub_code, work_date)
  - events of other scopes never leak into the cycle
  - open cycle (no FINISH) and degenerate cycle (FINISH without START)
  - empty history
"""

from datetime import date, datetime

from app.services.cycle_selector import CycleScope, select_cycle
from app.services.event_log import WorkEvent

DAY1 = date(2026, 3, 2)
DAY2 = date(2026, 3, 3)


def ev(event_id, kind, hh_mm, *, day=DAY1, phase="10", sub_code="R01"):
    hour, minute = (int(p) for p in hh_mm.split(":"))
    return WorkEvent(
        event_id=event_id,
        operator_code="OP1",
        launch_code="LT100",
        kind=kind,
        occurred_at=datetime(day.year, day.month, day.day, hour, minute),
        event_date=day,
        phase=phase,
        sub_code=sub_code,
    )


def ids(cycle):
    return [e.event_id for e in cycle.events]


def test_empty_history_returns_none():
    assert select_cycle([]) is None


def test_scope_inferred_from_last_finish():
    events = [
        ev(1, "START", "08:00", day=DAY1),
        ev(2, "FINISH", "12:00", day=DAY1),
        ev(3, "START", "08:00", day=DAY2),
        ev(4, "FINISH", "11:00", day=DAY2),
    ]
    cycle = select_cycle(events)
    assert ids(cycle) == [3, 4]
    assert cycle.scope == CycleScope(phase="10", sub_code="R01", work_date=DAY2)
    assert cycle.is_closed


def test_work_date_hint_selects_older_day():
    events = [
        ev(1, "START", "08:00", day=DAY1),
        ev(2, "FINISH", "12:00", day=DAY1),
        ev(3, "START", "08:00", day=DAY2),
        ev(4, "FINISH", "11:00", day=DAY2),
    ]
    cycle = select_cycle(events, CycleScope(work_date=DAY1))
    assert ids(cycle) == [1, 2]


def test_other_phase_events_are_excluded():
    events = [
        ev(1, "START", "08:00"),
        ev(2, "START", "08:30", phase="20", sub_code="M05"),
        ev(3, "PAUSE", "09:00", phase="20", sub_code="M05"),
        ev(4, "FINISH", "12:00"),
    ]
    cycle = select_cycle(events, CycleScope(phase="10", sub_code="R01"))
    assert ids(cycle) == [1, 4]


def test_latest_span_wins_within_scope():
    events = [
        ev(1, "START", "06:00"),
        ev(2, "FINISH", "07:00"),
        ev(3, "START", "08:00"),
        ev(4, "PAUSE", "09:00"),
        ev(5, "RESUME", "09:10"),
        ev(6, "FINISH", "10:00"),
    ]
    assert ids(select_cycle(events)) == [3, 4, 5, 6]


def test_restart_before_finish_uses_nearest_start():
    events = [ev(1, "START", "06:00"), ev(2, "START", "07:00"), ev(3, "FINISH", "08:00")]
    assert ids(select_cycle(events)) == [2, 3]


def test_open_cycle_starts_at_last_start():
    events = [ev(1, "START", "06:00"), ev(2, "FINISH", "07:00", day=DAY2), ev(3, "START", "08:00")]
    cycle = select_cycle(events, CycleScope(work_date=DAY1))
    assert ids(cycle) == [3]
    assert not cycle.is_closed

    events = [ev(1, "START", "06:00"), ev(2, "PAUSE", "07:00")]
    cycle = select_cycle(events)
    assert ids(cycle) == [1, 2]
    assert not cycle.is_closed


def test_finish_without_start_is_degenerate():
    events = [ev(1, "PAUSE", "06:00"), ev(2, "RESUME", "06:30"), ev(3, "FINISH", "08:00")]
    cycle = select_cycle(events)
    assert ids(cycle) == [1, 2, 3]
    assert cycle.start_event is None


def test_missing_and_empty_tags_compare_equal():
    events = [
        ev(1, "START", "08:00", phase=None, sub_code=None),
        ev(2, "FINISH", "09:00", phase="", sub_code=""),
    ]
    assert ids(select_cycle(events)) == [1, 2]


def test_unknown_scope_gives_empty_cycle():
    events = [ev(1, "START", "08:00"), ev(2, "FINISH", "09:00")]
    cycle = select_cycle(events, CycleScope(phase="99"))
    assert cycle.events == ()


def test_ties_broken_by_insertion_sequence():
    events = [ev(2, "FINISH", "08:00"), ev(1, "START", "08:00")]
    assert select_cycle(events).kinds() == ["START", "FINISH"]
