"""
Work time record lifecycle.

Business edits, hold / release, timestamp repair, validation for transport
and the transmission hand-off. All ORM writes and db.session.commit() for
record status changes live here.

Processing status:
    PENDING (NULL) -> VALIDATED -> TRANSMITTED
    PENDING / VALIDATED <-> ON_HOLD (release returns to PENDING)
    TRANSMITTED is terminal for business edits.

Transport rule:
    A record with productive duration <= 0 is never validated or
    transmitted; the downstream system rejects it.

Batch operations never raise for a single item. Every id lands in exactly
one bucket with a ``reason`` naming the outcome.

Functions:
    - list_records:                 filtered listing ("PENDING" selects NULL)
    - correct_record:               business edit, resets VALIDATED / ON_HOLD
    - set_on_hold / release_hold:   hold handling
    - delete_record:                removes a non-transmitted record
    - validate_record:              single-record validation
    - repair_timestamps(_batch):    fix midnight-collapsed start / end times
    - validate_and_transmit_batch:  {validated, skipped, invalid}
    - mark_transmitted_batch:       {transmitted, skipped, invalid}
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    RecordLockedError,
    TransitionError,
    TransportIneligible,
    ValidationError,
)
from app.models import db
from app.models.work_time import (
    DURATION_TOLERANCE_MIN,
    PENDING_LABEL,
    PROCESSING_STATUSES,
    STATUS_ON_HOLD,
    STATUS_PENDING,
    STATUS_TRANSITIONS,
    STATUS_TRANSMITTED,
    STATUS_VALIDATED,
    WorkTimeRecord,
)
from app.services.consolidation_service import (
    apply_durations,
    get_record,
    record_cycle,
    to_store_datetime,
)
from app.services.duration_calculator import compute_durations, productive_minutes
from app.services.event_log import is_midnight_collapsed, rewrite_event_timestamp
from app.services.event_validation import validate_with_repair
from app.services.helpers.store_retry import run_with_store_retry
from app.utils.helpers import parse_date_input, parse_datetime_input

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "phase",
    "sub_code",
    "total_duration_min",
    "pause_duration_min",
    "start_time",
    "end_time",
)
_DURATION_FIELDS = ("total_duration_min", "pause_duration_min", "productive_duration_min")
_REQUIRED_FIELDS = ("operator_code", "launch_code", "phase", "sub_code", "work_date", "start_time", "end_time")

REASON_UNEXPECTED = "UnexpectedError"


# ── Queries ───────────────────────────────────────────────────────────────────


def list_records(
    status: str | None = None,
    operator_code: str | None = None,
    launch_code: str | None = None,
    work_date=None,
    date_from=None,
    date_to=None,
) -> list[dict]:
    """List records with optional filters.

    Args:
        status: "PENDING" (NULL), VALIDATED, ON_HOLD or TRANSMITTED.
        work_date / date_from / date_to: date or ISO string.

    Raises:
        ValidationError: unknown status or unparsable date.
    """
    stmt = select(WorkTimeRecord)

    if status:
        label = status.strip().upper()
        if label == PENDING_LABEL:
            stmt = stmt.where(WorkTimeRecord.processing_status.is_(None))
        elif label in PROCESSING_STATUSES:
            stmt = stmt.where(WorkTimeRecord.processing_status == label)
        else:
            raise ValidationError(
                f"Invalid status '{status}'",
                details={"allowed": [PENDING_LABEL, *sorted(PROCESSING_STATUSES)]},
            )
    if operator_code:
        stmt = stmt.where(WorkTimeRecord.operator_code == operator_code)
    if launch_code:
        stmt = stmt.where(WorkTimeRecord.launch_code == launch_code)

    try:
        work_date = parse_date_input(work_date)
        date_from = parse_date_input(date_from)
        date_to = parse_date_input(date_to)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if work_date:
        stmt = stmt.where(WorkTimeRecord.work_date == work_date)
    if date_from:
        stmt = stmt.where(WorkTimeRecord.work_date >= date_from)
    if date_to:
        stmt = stmt.where(WorkTimeRecord.work_date <= date_to)

    stmt = stmt.order_by(WorkTimeRecord.work_date.desc(), WorkTimeRecord.id)
    rows = run_with_store_retry(
        lambda: db.session.execute(stmt).scalars().all(), operation="list_records"
    )
    return [r.to_dict() for r in rows]


# ── Status transitions ────────────────────────────────────────────────────────


def _apply_transition(record: WorkTimeRecord, action: str) -> None:
    rule = STATUS_TRANSITIONS[action]
    if record.processing_status in rule["from"]:
        record.processing_status = rule["to"]
        return
    if record.is_transmitted:
        raise RecordLockedError(record.id, action=action)
    raise TransitionError(record.id, action, record.processing_status)


def _transition(record_id: int, action: str) -> dict:
    record = get_record(record_id)
    previous = record.processing_status
    _apply_transition(record, action)
    db.session.commit()
    logger.info(
        "Work time record %s: %s -> %s",
        action, previous or PENDING_LABEL, record.processing_status or PENDING_LABEL,
        extra={"record_id": record_id, "status": record.processing_status},
    )
    return record.to_dict()


def set_on_hold(record_id: int) -> dict:
    """PENDING / VALIDATED -> ON_HOLD."""
    return _transition(record_id, "hold")


def release_hold(record_id: int) -> dict:
    """ON_HOLD -> PENDING."""
    return _transition(record_id, "release")


def delete_record(record_id: int) -> dict:
    """Delete a record; TRANSMITTED records are locked. Source events are kept."""
    record = get_record(record_id)
    if record.is_transmitted:
        raise RecordLockedError(record.id, action="delete")
    db.session.delete(record)
    db.session.commit()
    logger.info("Work time record deleted", extra={"record_id": record_id})
    return {"deleted": True, "id": record_id}


# ── Corrections ───────────────────────────────────────────────────────────────


def _coerce_correction(field: str, value):
    if field in ("phase", "sub_code"):
        text = (str(value) if value is not None else "").strip()
        if not text:
            raise ValidationError(f"{field} cannot be empty")
        return text
    if field in ("total_duration_min", "pause_duration_min"):
        try:
            minutes = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{field} must be an integer") from exc
        if minutes < 0:
            raise ValidationError(f"{field} cannot be negative")
        return minutes
    try:
        parsed = parse_datetime_input(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if parsed is None:
        raise ValidationError(f"{field} cannot be empty")
    return to_store_datetime(parsed)


def correct_record(record_id: int, fields: dict) -> dict:
    """Apply a business correction to a non-transmitted record.

    ``productive_duration_min`` is never taken from the caller; it is
    recomputed whenever total or pause change. A VALIDATED or ON_HOLD record
    goes back to PENDING and must be validated again.

    Raises:
        NotFoundError, RecordLockedError, ValidationError, ConflictError
    """
    record = get_record(record_id)
    if record.is_transmitted:
        raise RecordLockedError(record_id)

    fields = fields or {}
    updates = {f: _coerce_correction(f, fields[f]) for f in EDITABLE_FIELDS if f in fields}
    if not updates:
        raise ValidationError(
            "No editable field supplied",
            details={"editable": list(EDITABLE_FIELDS)},
        )

    start = updates.get("start_time", record.start_time)
    end = updates.get("end_time", record.end_time)
    if start and end and end < start:
        raise ValidationError("end_time cannot be before start_time")

    for attr, value in updates.items():
        setattr(record, attr, value)
    if "total_duration_min" in updates or "pause_duration_min" in updates:
        record.productive_duration_min = productive_minutes(
            record.total_duration_min or 0, record.pause_duration_min or 0
        )

    previous = record.processing_status
    if previous in (STATUS_VALIDATED, STATUS_ON_HOLD):
        record.processing_status = STATUS_PENDING

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "WorkTimeRecord",
            "natural_key",
            f"{record.operator_code}/{record.launch_code}/{updates.get('phase')}/{updates.get('sub_code')}",
        ) from exc

    logger.info(
        "Work time record corrected",
        extra={
            "record_id": record_id,
            "fields": sorted(updates),
            "status": record.processing_status,
        },
    )
    return record.to_dict()


# ── Timestamp repair ──────────────────────────────────────────────────────────


def _repair_record_timestamps(record: WorkTimeRecord) -> tuple[dict, list[dict]]:
    """Re-derive midnight start / end times from the record's events.

    Rewrites the midnight-collapsed ``created_at`` of the source START /
    FINISH events and recomputes durations. Does not commit.

    Returns:
        (record field changes, event rewrites)
    """
    if not record.has_midnight_times:
        return {}, []

    cycle = record_cycle(record)
    if cycle is None or not cycle.events:
        raise ValidationError(f"No source events found for record {record.id}")
    report, cycle, _ = validate_with_repair(cycle)
    if not report.valid:
        raise ValidationError(
            f"Events of record {record.id} do not form a valid cycle",
            details=report.to_dict(),
        )

    rewrites = []
    for event in (cycle.start_event, cycle.finish_event):
        if event is None or event.event_id is None:
            continue
        if is_midnight_collapsed(event.created_at) and event.occurred_at != event.created_at:
            rewrites.append(rewrite_event_timestamp(event.event_id, event.occurred_at))

    durations = compute_durations(cycle.events)
    changes = apply_durations(record, durations)
    return changes, rewrites


def repair_timestamps(record_id: int) -> dict:
    """Repair midnight-collapsed start / end times of one record (any status).

    Returns:
        {"repaired": bool, "changes": {...}, "event_rewrites": [...], "record": {...}}
    """
    record = get_record(record_id)
    changes, rewrites = _repair_record_timestamps(record)
    if changes or rewrites:
        db.session.commit()
        logger.info(
            "Work time record timestamps repaired",
            extra={"record_id": record_id, "fields": sorted(changes), "events": len(rewrites)},
        )
    return {
        "repaired": bool(changes or rewrites),
        "changes": changes,
        "event_rewrites": rewrites,
        "record": record.to_dict(),
    }


def repair_timestamps_batch(record_ids: list[int]) -> dict:
    """Repair many records; returns {"repaired": [...], "unchanged": [...], "errors": [...]}."""
    buckets = {"repaired": [], "unchanged": [], "errors": []}
    for record_id in record_ids or []:
        try:
            result = repair_timestamps(record_id)
        except (NotFoundError, ValidationError) as exc:
            db.session.rollback()
            buckets["errors"].append(
                {"id": record_id, "reason": type(exc).__name__, "message": str(exc)}
            )
            continue
        except Exception as exc:
            db.session.rollback()
            logger.exception("Unexpected error repairing record timestamps", extra={"record_id": record_id})
            buckets["errors"].append({"id": record_id, "reason": REASON_UNEXPECTED, "message": str(exc)})
            continue
        bucket = "repaired" if result["repaired"] else "unchanged"
        buckets[bucket].append({"id": record_id, "changes": result["changes"]})
    return buckets


# ── Validation for transport ──────────────────────────────────────────────────


def check_record(record: WorkTimeRecord) -> list[str]:
    """Consistency errors of a record; empty when it can be validated."""
    errors = []
    for attr in _REQUIRED_FIELDS:
        if getattr(record, attr) in (None, ""):
            errors.append(f"Missing required field '{attr}'")
    for attr in _DURATION_FIELDS:
        value = getattr(record, attr)
        if value is None or value < 0:
            errors.append(f"{attr} must be a non-negative number")
    if not errors:
        expected = record.total_duration_min - record.pause_duration_min
        if abs(record.productive_duration_min - expected) > DURATION_TOLERANCE_MIN:
            errors.append(
                f"productive_duration_min={record.productive_duration_min} "
                f"!= total - pause = {expected}"
            )
    return errors


def autofix_record(record: WorkTimeRecord) -> list[str]:
    """Clamp negative durations and recompute productive. Does not commit."""
    fixes = []
    for attr in ("total_duration_min", "pause_duration_min"):
        value = getattr(record, attr)
        if value is None or value < 0:
            setattr(record, attr, 0)
            fixes.append(f"{attr}: {value} -> 0")
    expected = productive_minutes(record.total_duration_min, record.pause_duration_min)
    if record.productive_duration_min != expected:
        fixes.append(f"productive_duration_min: {record.productive_duration_min} -> {expected}")
        record.productive_duration_min = expected
    return fixes


def _validate_for_transport(record: WorkTimeRecord, *, auto_fix: bool = True) -> list[str]:
    """Run the validation pipeline on one record and mark it VALIDATED. Does not commit.

    Raises:
        TransitionError / RecordLockedError: ON_HOLD or TRANSMITTED.
        TransportIneligible: productive duration <= 0 (before or after fixes).
        ValidationError: consistency errors left after the auto-fix pass.
    """
    if record.processing_status not in STATUS_TRANSITIONS["validate"]["from"]:
        _apply_transition(record, "validate")
    if (record.productive_duration_min or 0) <= 0:
        raise TransportIneligible(record.id, record.productive_duration_min)

    fixes = []
    if auto_fix and record.has_midnight_times:
        try:
            changes, _ = _repair_record_timestamps(record)
        except ValidationError as exc:
            logger.warning(
                "Timestamp repair not possible during validation: %s", exc,
                extra={"record_id": record.id},
            )
        else:
            fixes.extend(f"{attr}: {c['old']} -> {c['new']}" for attr, c in changes.items())

    errors = check_record(record)
    if errors and auto_fix:
        fixes.extend(autofix_record(record))
        errors = check_record(record)
    if errors:
        raise ValidationError(
            f"Record {record.id} is inconsistent",
            details={"errors": errors, "fixes": fixes},
        )
    if record.productive_duration_min <= 0:
        raise TransportIneligible(record.id, record.productive_duration_min)

    _apply_transition(record, "validate")
    return fixes


def validate_record(record_id: int, *, auto_fix: bool = True) -> dict:
    """Validate one record for transport (single-item form of the batch)."""
    record = get_record(record_id)
    try:
        fixes = _validate_for_transport(record, auto_fix=auto_fix)
    except (TransitionError, TransportIneligible, ValidationError):
        db.session.rollback()
        raise
    db.session.commit()
    logger.info(
        "Work time record validated",
        extra={"record_id": record_id, "status": STATUS_VALIDATED},
    )
    return {"record": record.to_dict(), "fixes": fixes}


def validate_and_transmit_batch(record_ids: list[int], *, auto_fix: bool = True) -> dict:
    """Validate many records for transport.

    Returns:
        {"validated": [...], "skipped": [...], "invalid": [...]}
        skipped   ON_HOLD or TRANSMITTED
        invalid   unknown id, productive <= 0, unfixable inconsistency
    """
    buckets = {"validated": [], "skipped": [], "invalid": []}

    for record_id in record_ids or []:
        record = db.session.get(WorkTimeRecord, record_id)
        if record is None:
            buckets["invalid"].append({
                "id": record_id,
                "reason": "NotFoundError",
                "message": f"WorkTimeRecord id={record_id} not found",
            })
            continue
        try:
            fixes = _validate_for_transport(record, auto_fix=auto_fix)
            db.session.commit()
        except TransitionError as exc:
            db.session.rollback()
            buckets["skipped"].append({
                "id": record_id,
                "reason": type(exc).__name__,
                "status": exc.current_status or PENDING_LABEL,
                "message": str(exc),
            })
            continue
        except TransportIneligible as exc:
            db.session.rollback()
            buckets["invalid"].append({
                "id": record_id,
                "reason": "TransportIneligible",
                "productive_duration_min": exc.productive_duration_min,
                "message": str(exc),
            })
            continue
        except ValidationError as exc:
            db.session.rollback()
            buckets["invalid"].append({
                "id": record_id,
                "reason": "ValidationError",
                "errors": exc.details.get("errors", []),
                "message": str(exc),
            })
            continue
        except Exception as exc:
            db.session.rollback()
            logger.exception("Unexpected error validating record", extra={"record_id": record_id})
            buckets["invalid"].append({"id": record_id, "reason": REASON_UNEXPECTED, "message": str(exc)})
            continue
        buckets["validated"].append({"id": record_id, "fixes": fixes})

    logger.info(
        "Validation batch done validated=%d skipped=%d invalid=%d",
        len(buckets["validated"]), len(buckets["skipped"]), len(buckets["invalid"]),
    )
    return buckets


def mark_transmitted_batch(record_ids: list[int]) -> dict:
    """Mark VALIDATED records with positive productive duration as TRANSMITTED.

    Returns:
        {"transmitted": [...], "skipped": [...], "invalid": [...]}
    """
    buckets = {"transmitted": [], "skipped": [], "invalid": []}

    for record_id in record_ids or []:
        record = db.session.get(WorkTimeRecord, record_id)
        if record is None:
            buckets["invalid"].append({
                "id": record_id,
                "reason": "NotFoundError",
                "message": f"WorkTimeRecord id={record_id} not found",
            })
            continue
        if (record.productive_duration_min or 0) <= 0:
            exc = TransportIneligible(record_id, record.productive_duration_min)
            buckets["invalid"].append({"id": record_id, "reason": "TransportIneligible", "message": str(exc)})
            continue
        if record.processing_status != STATUS_VALIDATED:
            buckets["skipped"].append({
                "id": record_id,
                "reason": "TransitionError",
                "status": record.processing_status or PENDING_LABEL,
            })
            continue
        record.processing_status = STATUS_TRANSMITTED
        db.session.commit()
        buckets["transmitted"].append({"id": record_id})

    logger.info(
        "Transmission batch done transmitted=%d skipped=%d invalid=%d",
        len(buckets["transmitted"]), len(buckets["skipped"]), len(buckets["invalid"]),
    )
    return buckets
