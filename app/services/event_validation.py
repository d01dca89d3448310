"""
Event lifecycle validation and auto-repair.

Pure functions over ``Cycle`` values: nothing here touches the database or
mutates its input. Repair returns a new Cycle; the caller decides what to do
with it.

Lifecycle state machine:
    START   -> PAUSE | FINISH
    PAUSE   -> RESUME | FINISH
    RESUME  -> PAUSE | FINISH
    FINISH  -> (terminal)

Outcomes:
    fatal    no START; more RESUME than PAUSE; no FINISH (open cycle)
    warning  more PAUSE than RESUME; illegal transition; unparsable explicit
             clock time; finish clock before start clock (midnight crossing)
    repair   clamp explicit clock times to canonical HH:MM; close an open
             cycle with a synthesized FINISH when an event carries a
             terminal status marker

Usage:
    report, cycle, fixes = validate_with_repair(cycle)
    if not report.valid:
        ...  # report.errors
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.models.operator_event import (
    KIND_FINISH,
    KIND_PAUSE,
    KIND_RESUME,
    KIND_START,
)
from app.services.cycle_selector import Cycle
from app.services.event_log import as_utc, sort_key
from app.utils.helpers import normalize_clock_time, parse_clock_time

EVENT_TRANSITIONS = {
    KIND_START: {KIND_PAUSE, KIND_FINISH},
    KIND_PAUSE: {KIND_RESUME, KIND_FINISH},
    KIND_RESUME: {KIND_PAUSE, KIND_FINISH},
    KIND_FINISH: set(),
}


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


@dataclass(frozen=True)
class RepairOutcome:
    cycle: Cycle
    fixes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def changed(self) -> bool:
        return bool(self.fixes)


def transition_warnings(kinds: list[str]) -> list[str]:
    warnings = []
    for index in range(1, len(kinds)):
        previous, current = kinds[index - 1], kinds[index]
        if current not in EVENT_TRANSITIONS.get(previous, set()):
            warnings.append(f"Illegal transition {previous} -> {current} at index {index}")
    return warnings


def validate_cycle(cycle: Cycle) -> ValidationReport:
    """Check lifecycle legality and PAUSE / RESUME pairing of one cycle."""
    errors: list[str] = []
    warnings: list[str] = []
    kinds = cycle.kinds()

    if not kinds:
        return ValidationReport(valid=False, errors=("No events in the selected cycle",))

    start = cycle.start_event
    if start is None:
        errors.append("START event missing")
    if not cycle.is_closed:
        errors.append("FINISH event missing and no terminal status recorded")

    pauses = kinds.count(KIND_PAUSE)
    resumes = kinds.count(KIND_RESUME)
    if resumes > pauses:
        errors.append(f"{resumes - pauses} RESUME event(s) without a matching PAUSE")
    elif pauses > resumes:
        warnings.append(f"{pauses - resumes} PAUSE event(s) without a matching RESUME")

    warnings.extend(transition_warnings(kinds))

    finish = cycle.finish_event
    start_clock = finish_clock = None
    if start is not None and start.explicit_start_time:
        start_clock = parse_clock_time(start.explicit_start_time)
        if start_clock is None:
            warnings.append(f"Unparsable start clock time '{start.explicit_start_time}'")
    if finish is not None and finish.explicit_finish_time:
        finish_clock = parse_clock_time(finish.explicit_finish_time)
        if finish_clock is None:
            warnings.append(f"Unparsable finish clock time '{finish.explicit_finish_time}'")
    if start_clock and finish_clock and finish_clock < start_clock:
        warnings.append("Finish clock time earlier than start clock time (crosses midnight)")

    return ValidationReport(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))


def repair_cycle(cycle: Cycle) -> RepairOutcome:
    """Apply the deterministic repairs once and return the repaired cycle."""
    fixes: list[str] = []
    repaired = []
    for event in cycle.events:
        changes = {}
        for attr in ("explicit_start_time", "explicit_finish_time"):
            raw = getattr(event, attr)
            if not raw:
                continue
            fixed = normalize_clock_time(raw)
            if fixed != raw:
                changes[attr] = fixed
                fixes.append(f"{event.kind} {attr} normalised: {raw} -> {fixed}")
        repaired.append(event.evolve(**changes) if changes else event)

    repaired.sort(key=sort_key)
    if repaired and repaired[-1].kind != KIND_FINISH:
        marker = next((e for e in reversed(repaired) if e.has_terminal_status), None)
        if marker is not None:
            anchor = repaired[-1]
            repaired.append(
                anchor.evolve(
                    event_id=None,
                    kind=KIND_FINISH,
                    occurred_at=max(marker.occurred_at, anchor.occurred_at, key=as_utc),
                    status=marker.status,
                    explicit_start_time=None,
                    explicit_finish_time=None,
                    synthetic=True,
                )
            )
            fixes.append(
                f"FINISH synthesized from terminal status '{marker.status}' on event {marker.event_id}"
            )

    return RepairOutcome(cycle=Cycle(events=tuple(repaired), scope=cycle.scope), fixes=tuple(fixes))


def validate_with_repair(cycle: Cycle, *, auto_fix: bool = True) -> tuple[ValidationReport, Cycle, tuple[str, ...]]:
    """validate -> (repair once -> re-validate) pipeline.

    Returns:
        (final report, cycle the report refers to, fixes applied)
    """
    report = validate_cycle(cycle)
    if report.valid or not auto_fix:
        return report, cycle, ()

    outcome = repair_cycle(cycle)
    if not outcome.changed:
        return report, cycle, ()
    return validate_cycle(outcome.cycle), outcome.cycle, outcome.fixes
