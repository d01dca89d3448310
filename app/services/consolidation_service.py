"""
Work time consolidation service.

Turns the event history of one (operator, launch) pair into exactly one
``WorkTimeRecord`` per work cycle. All ORM writes and db.session.commit()
for consolidated records live here; blueprints, jobs and scripts call these
functions.

Pipeline (consolidate):
    load events -> select cycle -> validate (+ one auto-repair pass)
    -> compute durations -> classify -> duplicate lookup -> insert

Outcomes are returned as data, never raised:
    CREATED          new record inserted
    ALREADY_EXISTS   a record for the cycle exists (found before insert, or
                     recovered from a unique-constraint violation)
    SKIPPED          classification says the launch is not consolidated
    ERROR            no events, unrecoverable lifecycle defects, or the
                     classification backend is down

Functions:
    - consolidate:                one cycle, idempotent
    - consolidate_batch:          many cycles, three result buckets
    - recalculate_durations:      recompute an existing record from its events
    - verify_consolidation:       compare a stored record with its events
    - find_unconsolidated_cycles: finished cycles without a record
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ClassificationUnavailable,
    NotFoundError,
    RecordLockedError,
    ValidationError,
)
from app.integrations.classification_gateway import (
    ClassificationGateway,
    get_classification_gateway,
)
from app.models import db
from app.models.operator_event import KIND_FINISH, OperatorEvent
from app.models.work_time import DURATION_TOLERANCE_MIN, WorkTimeRecord
from app.services.cycle_selector import Cycle, CycleScope, select_cycle
from app.services.duration_calculator import Durations, compute_durations
from app.services.event_log import load_events
from app.services.event_validation import validate_with_repair
from app.services.helpers.store_retry import run_with_store_retry
from app.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

STATUS_CREATED = "CREATED"
STATUS_ALREADY_EXISTS = "ALREADY_EXISTS"
STATUS_SKIPPED = "SKIPPED"
STATUS_ERROR = "ERROR"

REASON_NO_EVENTS = "NoEvents"
REASON_VALIDATION = "ValidationError"
REASON_NOT_APPLICABLE = "SkippedNotApplicable"
REASON_ALREADY_CONSOLIDATED = "AlreadyConsolidated"
REASON_STORE_CONFLICT = "StoreConflict"
REASON_CLASSIFICATION = "ClassificationUnavailable"
REASON_UNEXPECTED = "UnexpectedError"


@dataclass
class ConsolidationResult:
    status: str
    record: dict | None = None
    reason: str | None = None
    message: str | None = None
    warnings: list[str] = field(default_factory=list)
    fixes: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_CREATED, STATUS_ALREADY_EXISTS)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "record": self.record,
            "reason": self.reason,
            "message": self.message,
            "warnings": list(self.warnings),
            "fixes": list(self.fixes),
        }


# ── Helpers ───────────────────────────────────────────────────────────────────


def to_store_datetime(value: datetime | None) -> datetime | None:
    """Record timestamps are stored naive; aware values are converted to UTC first."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _legacy_placeholders() -> set[str]:
    raw = current_app.config.get("LEGACY_CLASSIFICATION_PLACEHOLDERS") or ()
    if isinstance(raw, str):
        raw = raw.split(",")
    return {str(item).strip().upper() for item in raw if str(item).strip()}


def has_trustworthy_keys(operator_code: str, phase: str | None, sub_code: str | None) -> bool:
    """True when the events' own (phase, sub_code) can be used as-is.

    Legacy terminals wrote the operator code (or a fixed placeholder) into
    the sub_code column; such values must be resolved through classification.
    """
    phase = (phase or "").strip()
    sub_code = (sub_code or "").strip()
    if not phase or not sub_code:
        return False
    if sub_code.upper() == (operator_code or "").strip().upper():
        return False
    return sub_code.upper() not in _legacy_placeholders()


def _find_existing(
    operator_code: str,
    launch_code: str,
    phase: str,
    sub_code: str,
    work_date: date,
    start_time: datetime | None,
) -> WorkTimeRecord | None:
    """Duplicate lookup: alternate key first, then the natural key."""

    def _lookup():
        if start_time is not None:
            by_start = db.session.execute(
                select(WorkTimeRecord).where(
                    WorkTimeRecord.operator_code == operator_code,
                    WorkTimeRecord.launch_code == launch_code,
                    WorkTimeRecord.start_time == start_time,
                )
            ).scalar_one_or_none()
            if by_start is not None:
                return by_start
        return db.session.execute(
            select(WorkTimeRecord).where(
                WorkTimeRecord.operator_code == operator_code,
                WorkTimeRecord.launch_code == launch_code,
                WorkTimeRecord.phase == phase,
                WorkTimeRecord.sub_code == sub_code,
                WorkTimeRecord.work_date == work_date,
            )
        ).scalar_one_or_none()

    return run_with_store_retry(_lookup, operation="find_work_time_record")


def _insert_record(values: dict) -> WorkTimeRecord:
    def _insert():
        record = WorkTimeRecord(**values)
        db.session.add(record)
        db.session.commit()
        return record

    return run_with_store_retry(_insert, operation="insert_work_time_record")


def _select_and_validate(
    operator_code: str,
    launch_code: str,
    scope: CycleScope | None,
    auto_fix: bool,
):
    """Shared front half of the pipeline.

    Returns:
        (cycle, report, fixes); cycle is None when there are no events.
    """
    events = load_events(operator_code, launch_code)
    cycle = select_cycle(events, scope)
    if cycle is None:
        return None, None, ()
    report, cycle, fixes = validate_with_repair(cycle, auto_fix=auto_fix)
    return cycle, report, fixes


def _classify(
    operator_code: str,
    launch_code: str,
    cycle: Cycle,
    gateway: ClassificationGateway | None,
):
    """Return (phase, sub_code, None) or (None, None, skip_reason)."""
    if has_trustworthy_keys(operator_code, cycle.scope.phase, cycle.scope.sub_code):
        return cycle.scope.phase.strip(), cycle.scope.sub_code.strip(), None
    gateway = gateway or get_classification_gateway()
    result = gateway.resolve(launch_code)
    if not result.is_applicable:
        return None, None, result.reason
    return result.phase, result.sub_code, None


# ── Consolidation ─────────────────────────────────────────────────────────────


def consolidate(
    operator_code: str,
    launch_code: str,
    scope: CycleScope | None = None,
    *,
    force: bool = False,
    auto_fix: bool = True,
    gateway: ClassificationGateway | None = None,
) -> ConsolidationResult:
    """Consolidate the selected cycle of one (operator, launch) pair.

    Idempotent: repeated or concurrent calls for the same cycle return the
    same record. ``force`` skips the pre-insert lookup but still never
    creates a duplicate (the unique constraints resolve it).

    Args:
        operator_code: Operator identifier.
        launch_code: Launch (manufacturing order) identifier.
        scope: Optional (phase, sub_code, work_date) hint.
        force: Skip the pre-insert duplicate lookup.
        auto_fix: Allow one auto-repair pass on an invalid cycle.
        gateway: Classification backend override (defaults to config).

    Returns:
        ConsolidationResult. Never raises for business outcomes.
    """
    log_ctx = {"operator_code": operator_code, "launch_code": launch_code}

    cycle, report, fixes = _select_and_validate(operator_code, launch_code, scope, auto_fix)
    if cycle is None:
        logger.info("Consolidation found no events", extra={**log_ctx, "reason": REASON_NO_EVENTS})
        return ConsolidationResult(
            status=STATUS_ERROR,
            reason=REASON_NO_EVENTS,
            message=f"No events for operator {operator_code} on launch {launch_code}",
        )
    if not report.valid:
        logger.warning(
            "Consolidation rejected invalid cycle: %s",
            "; ".join(report.errors),
            extra={**log_ctx, "reason": REASON_VALIDATION},
        )
        return ConsolidationResult(
            status=STATUS_ERROR,
            reason=REASON_VALIDATION,
            message="; ".join(report.errors),
            warnings=list(report.warnings),
            fixes=list(fixes),
        )

    warnings = list(report.warnings)
    durations: Durations = compute_durations(cycle.events)
    if durations.productive_min <= 0:
        warnings.append("Productive duration is zero; record will not be transportable")
        logger.warning("Consolidating cycle with zero productive duration", extra=log_ctx)

    try:
        phase, sub_code, skip_reason = _classify(operator_code, launch_code, cycle, gateway)
    except ClassificationUnavailable as exc:
        logger.error(
            "Classification unavailable: %s", exc, extra={**log_ctx, "reason": REASON_CLASSIFICATION}
        )
        return ConsolidationResult(
            status=STATUS_ERROR,
            reason=REASON_CLASSIFICATION,
            message=str(exc),
            warnings=warnings,
            fixes=list(fixes),
        )
    if skip_reason is not None:
        logger.info(
            "Consolidation skipped: launch not applicable (%s)",
            skip_reason,
            extra={**log_ctx, "reason": REASON_NOT_APPLICABLE},
        )
        return ConsolidationResult(
            status=STATUS_SKIPPED,
            reason=REASON_NOT_APPLICABLE,
            message=f"Launch {launch_code} is not consolidated: {skip_reason}",
            warnings=warnings,
            fixes=list(fixes),
        )

    work_date = cycle.scope.work_date
    start_time = to_store_datetime(durations.start_time)
    end_time = to_store_datetime(durations.end_time)

    if not force:
        existing = _find_existing(operator_code, launch_code, phase, sub_code, work_date, start_time)
        if existing is not None:
            logger.info(
                "Cycle already consolidated",
                extra={**log_ctx, "record_id": existing.id, "reason": REASON_ALREADY_CONSOLIDATED},
            )
            return ConsolidationResult(
                status=STATUS_ALREADY_EXISTS,
                record=existing.to_dict(),
                reason=REASON_ALREADY_CONSOLIDATED,
                message=f"Record {existing.id} already exists",
                warnings=warnings,
                fixes=list(fixes),
            )

    values = {
        "operator_code": operator_code,
        "launch_code": launch_code,
        "phase": phase,
        "sub_code": sub_code,
        "work_date": work_date,
        "start_time": start_time,
        "end_time": end_time,
        "total_duration_min": durations.total_min,
        "pause_duration_min": durations.pause_min,
        "productive_duration_min": durations.productive_min,
        "events_count": durations.count,
        "calculation_method": durations.method,
    }
    try:
        record = _insert_record(values)
    except IntegrityError:
        db.session.rollback()
        existing = _find_existing(operator_code, launch_code, phase, sub_code, work_date, start_time)
        if existing is None:
            raise
        logger.info(
            "Concurrent consolidation resolved by unique constraint",
            extra={**log_ctx, "record_id": existing.id, "reason": REASON_STORE_CONFLICT},
        )
        return ConsolidationResult(
            status=STATUS_ALREADY_EXISTS,
            record=existing.to_dict(),
            reason=REASON_ALREADY_CONSOLIDATED,
            message=f"Record {existing.id} created by a concurrent request",
            warnings=warnings,
            fixes=list(fixes),
        )

    logger.info(
        "Work time record created",
        extra={**log_ctx, "record_id": record.id, "productive_min": durations.productive_min},
    )
    return ConsolidationResult(
        status=STATUS_CREATED,
        record=record.to_dict(),
        warnings=warnings,
        fixes=list(fixes),
    )


def text_field(item: dict, key: str) -> str | None:
    """Return ``item[key]`` stripped, None when absent.

    Raises:
        ValueError: the value is present but not a string.
    """
    value = item.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value.strip()


def scope_from_item(item: dict) -> CycleScope | None:
    """Build a CycleScope from the optional keys of a request item."""
    phase = text_field(item, "phase")
    sub_code = text_field(item, "sub_code")
    work_date = parse_date_input(item.get("work_date"))
    if phase is None and sub_code is None and work_date is None:
        return None
    return CycleScope(phase=phase, sub_code=sub_code, work_date=work_date)


def consolidate_batch(
    items: list[dict],
    *,
    force: bool = False,
    auto_fix: bool = True,
    gateway: ClassificationGateway | None = None,
) -> dict:
    """Consolidate many cycles; one item's failure never aborts the batch.

    Returns:
        {"created": [...], "skipped": [...], "errors": [...]}; ALREADY_EXISTS
        and SKIPPED both land in ``skipped`` with their reason.
    """
    buckets = {"created": [], "skipped": [], "errors": []}

    for index, item in enumerate(items or []):
        item = item if isinstance(item, dict) else {}
        try:
            operator_code = text_field(item, "operator_code") or ""
            launch_code = text_field(item, "launch_code") or ""
        except ValueError as exc:
            buckets["errors"].append({
                "index": index,
                "operator_code": item.get("operator_code"),
                "launch_code": item.get("launch_code"),
                "reason": REASON_VALIDATION,
                "message": str(exc),
            })
            continue
        entry = {"index": index, "operator_code": operator_code, "launch_code": launch_code}

        if not operator_code or not launch_code:
            buckets["errors"].append({
                **entry,
                "reason": REASON_VALIDATION,
                "message": "operator_code and launch_code are required",
            })
            continue

        try:
            result = consolidate(
                operator_code,
                launch_code,
                scope_from_item(item),
                force=force,
                auto_fix=auto_fix,
                gateway=gateway,
            )
        except ValueError as exc:
            buckets["errors"].append({**entry, "reason": REASON_VALIDATION, "message": str(exc)})
            continue
        except Exception as exc:
            db.session.rollback()
            logger.exception(
                "Unexpected error consolidating batch item",
                extra={"operator_code": operator_code, "launch_code": launch_code},
            )
            buckets["errors"].append({**entry, "reason": REASON_UNEXPECTED, "message": str(exc)})
            continue

        entry.update({
            "status": result.status,
            "reason": result.reason,
            "message": result.message,
            "record_id": result.record["id"] if result.record else None,
        })
        if result.status == STATUS_CREATED:
            buckets["created"].append(entry)
        elif result.status in (STATUS_ALREADY_EXISTS, STATUS_SKIPPED):
            buckets["skipped"].append(entry)
        else:
            buckets["errors"].append(entry)

    logger.info(
        "Consolidation batch done created=%d skipped=%d errors=%d",
        len(buckets["created"]), len(buckets["skipped"]), len(buckets["errors"]),
    )
    return buckets


# ── Maintenance ───────────────────────────────────────────────────────────────


def get_record(record_id: int) -> WorkTimeRecord:
    record = db.session.get(WorkTimeRecord, record_id)
    if record is None:
        raise NotFoundError(resource="WorkTimeRecord", resource_id=record_id)
    return record


def record_cycle(record: WorkTimeRecord) -> Cycle | None:
    """Re-select the event slice a record was consolidated from.

    Classified records may carry a (phase, sub_code) the events never had;
    when the exact scope finds nothing, only the work date narrows the slice.
    """
    events = load_events(record.operator_code, record.launch_code)
    cycle = select_cycle(
        events,
        CycleScope(phase=record.phase, sub_code=record.sub_code, work_date=record.work_date),
    )
    if cycle is not None and not cycle.events:
        cycle = select_cycle(events, CycleScope(work_date=record.work_date))
    return cycle


def apply_durations(record: WorkTimeRecord, durations: Durations) -> dict:
    """Copy computed durations onto a record; returns {field: {old, new}} for changed fields.

    The caller owns the commit.
    """
    new_values = {
        "start_time": to_store_datetime(durations.start_time),
        "end_time": to_store_datetime(durations.end_time),
        "total_duration_min": durations.total_min,
        "pause_duration_min": durations.pause_min,
        "productive_duration_min": durations.productive_min,
        "events_count": durations.count,
        "calculation_method": durations.method,
    }
    changes = {}
    for attr, value in new_values.items():
        old = getattr(record, attr)
        if old != value:
            changes[attr] = {
                "old": old.isoformat() if isinstance(old, datetime) else old,
                "new": value.isoformat() if isinstance(value, datetime) else value,
            }
            setattr(record, attr, value)
    return changes


def recalculate_durations(record_id: int, *, auto_fix: bool = True) -> dict:
    """Recompute durations of a non-transmitted record from its events.

    Raises:
        NotFoundError: unknown record.
        RecordLockedError: record already transmitted.
        ValidationError: the event slice no longer forms a valid cycle.
    """
    record = get_record(record_id)
    if record.is_transmitted:
        raise RecordLockedError(record_id, action="recalculate")

    cycle = record_cycle(record)
    if cycle is None:
        raise ValidationError(f"No events found for record {record_id}")
    report, cycle, fixes = validate_with_repair(cycle, auto_fix=auto_fix)
    if not report.valid:
        raise ValidationError(
            f"Events of record {record_id} do not form a valid cycle",
            details=report.to_dict(),
        )

    changes = apply_durations(record, compute_durations(cycle.events))
    if changes:
        db.session.commit()
        logger.info(
            "Work time record recalculated",
            extra={"record_id": record_id, "fields": sorted(changes)},
        )
    return {"record": record.to_dict(), "changes": changes, "fixes": list(fixes)}


def verify_consolidation(record_id: int) -> dict:
    """Compare a stored record with its source events.

    Returns:
        {"valid": bool, "errors": [...], "warnings": [...], "record": {...}}
    """
    record = get_record(record_id)
    errors: list[str] = []
    warnings: list[str] = []

    for attr in ("operator_code", "launch_code", "phase", "sub_code", "work_date", "start_time", "end_time"):
        if getattr(record, attr) in (None, ""):
            errors.append(f"Missing required field '{attr}'")

    for attr in ("total_duration_min", "pause_duration_min", "productive_duration_min"):
        if (getattr(record, attr) or 0) < 0:
            errors.append(f"Negative {attr}")

    expected = max(0, (record.total_duration_min or 0) - (record.pause_duration_min or 0))
    if abs((record.productive_duration_min or 0) - expected) > DURATION_TOLERANCE_MIN:
        errors.append(
            f"Productive duration {record.productive_duration_min} does not match "
            f"total - pause = {expected}"
        )
    if record.start_time and record.end_time and record.end_time < record.start_time:
        errors.append("end_time is before start_time")

    cycle = record_cycle(record)
    if cycle is None or not cycle.events:
        errors.append("No source events found for the record")
    else:
        if len(cycle.events) != record.events_count:
            warnings.append(
                f"Events count {record.events_count} differs from source slice ({len(cycle.events)})"
            )
        durations = compute_durations(cycle.events)
        if durations.total_min != record.total_duration_min:
            warnings.append(
                f"Stored total {record.total_duration_min} differs from recomputed {durations.total_min}"
            )
        if durations.pause_min != record.pause_duration_min:
            warnings.append(
                f"Stored pause {record.pause_duration_min} differs from recomputed {durations.pause_min}"
            )

    return {"valid": not errors, "errors": errors, "warnings": warnings, "record": record.to_dict()}


def find_unconsolidated_cycles(work_date: date | None = None) -> list[dict]:
    """Finished cycles (a FINISH event exists) that have no record for their day.

    Feeds the consolidation sweep job, which retries consolidations whose
    inline trigger failed.
    """
    finished = select(
        OperatorEvent.operator_code,
        OperatorEvent.launch_code,
        OperatorEvent.phase,
        OperatorEvent.sub_code,
        OperatorEvent.event_date,
    ).where(OperatorEvent.kind == KIND_FINISH).distinct()
    consolidated = select(
        WorkTimeRecord.operator_code,
        WorkTimeRecord.launch_code,
        WorkTimeRecord.work_date,
    )
    if work_date is not None:
        finished = finished.where(OperatorEvent.event_date == work_date)
        consolidated = consolidated.where(WorkTimeRecord.work_date == work_date)

    finished_rows = run_with_store_retry(
        lambda: db.session.execute(finished).all(), operation="find_finished_cycles"
    )
    done = {
        tuple(row)
        for row in run_with_store_retry(
            lambda: db.session.execute(consolidated).all(), operation="find_consolidated_days"
        )
    }

    pending = []
    for operator_code, launch_code, phase, sub_code, event_date in finished_rows:
        if (operator_code, launch_code, event_date) in done:
            continue
        pending.append({
            "operator_code": operator_code,
            "launch_code": launch_code,
            "phase": phase,
            "sub_code": sub_code,
            "work_date": event_date.isoformat() if event_date else None,
        })
    pending.sort(key=lambda c: (c["work_date"] or "", c["operator_code"], c["launch_code"]))
    return pending
