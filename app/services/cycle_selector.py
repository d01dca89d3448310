"""
Cycle selection over an operator's event history on one launch.

Operators reuse the same (operator, launch) pair across days and phases.
Consolidating the whole history would merge unrelated cycles and double
count durations, so selection narrows the history to one scope
(phase, sub_code, work_date) and, inside it, to the latest START..FINISH
span.

Algorithm:
    1. sort by (occurred_at, insertion sequence)
    2. scope = hint fields, missing ones inferred from the last FINISH
       (or the last event when nothing finished)
    3. keep events whose own (phase, sub_code, work_date) equal the scope,
       empty and missing tags compared as ""
    4. last FINISH of the slice; none -> open cycle from the last START
    5. nearest START before that FINISH -> [START..FINISH]; none -> the slice
       up to FINISH (degenerate, rejected by validation)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from app.models.operator_event import KIND_FINISH, KIND_START
from app.services.event_log import WorkEvent, sort_key


def _tag(value: str | None) -> str:
    return (value or "").strip()


@dataclass(frozen=True)
class CycleScope:
    """(phase, sub_code, work_date) narrowing a consolidation request.

    Every field is optional on a hint; a resolved scope has all three.
    """

    phase: str | None = None
    sub_code: str | None = None
    work_date: date | None = None

    def matches(self, event: WorkEvent) -> bool:
        return (
            _tag(event.phase) == _tag(self.phase)
            and _tag(event.sub_code) == _tag(self.sub_code)
            and event.work_date == self.work_date
        )

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "sub_code": self.sub_code,
            "work_date": self.work_date.isoformat() if self.work_date else None,
        }


@dataclass(frozen=True)
class Cycle:
    """Ordered events of one work cycle plus the scope it was selected for."""

    events: tuple[WorkEvent, ...]
    scope: CycleScope

    @property
    def is_closed(self) -> bool:
        return bool(self.events) and self.events[-1].kind == KIND_FINISH

    @property
    def start_event(self) -> WorkEvent | None:
        return next((e for e in self.events if e.kind == KIND_START), None)

    @property
    def finish_event(self) -> WorkEvent | None:
        return next((e for e in reversed(self.events) if e.kind == KIND_FINISH), None)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def with_events(self, events: Iterable[WorkEvent]) -> "Cycle":
        return Cycle(events=tuple(sorted(events, key=sort_key)), scope=self.scope)


def resolve_scope(ordered: list[WorkEvent], hint: CycleScope | None) -> CycleScope:
    """Fill the scope triple: hint fields first, then the reference event."""
    hint = hint or CycleScope()
    reference = next((e for e in reversed(ordered) if e.kind == KIND_FINISH), ordered[-1])
    return CycleScope(
        phase=hint.phase if hint.phase is not None else reference.phase,
        sub_code=hint.sub_code if hint.sub_code is not None else reference.sub_code,
        work_date=hint.work_date if hint.work_date is not None else reference.work_date,
    )


def select_cycle(events: Iterable[WorkEvent], scope: CycleScope | None = None) -> Cycle | None:
    """Isolate the single cycle to consolidate.

    Args:
        events: Full history of one (operator, launch) pair, any order.
        scope: Optional hint; any subset of its fields may be set.

    Returns:
        The selected Cycle (possibly open or degenerate), or None when there
        are no events at all.
    """
    ordered = sorted(events, key=sort_key)
    if not ordered:
        return None

    resolved = resolve_scope(ordered, scope)
    scoped = [e for e in ordered if resolved.matches(e)]

    finish_idx = next(
        (i for i in range(len(scoped) - 1, -1, -1) if scoped[i].kind == KIND_FINISH),
        None,
    )
    if finish_idx is None:
        start_idx = next(
            (i for i in range(len(scoped) - 1, -1, -1) if scoped[i].kind == KIND_START),
            0,
        )
        return Cycle(events=tuple(scoped[start_idx:]), scope=resolved)

    start_idx = next(
        (i for i in range(finish_idx, -1, -1) if scoped[i].kind == KIND_START),
        None,
    )
    if start_idx is None:
        return Cycle(events=tuple(scoped[: finish_idx + 1]), scope=resolved)
    return Cycle(events=tuple(scoped[start_idx: finish_idx + 1]), scope=resolved)
