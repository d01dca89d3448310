"""
Work Time Tracking Blueprint.

Routes for consolidating operator events into work time records and for
the record lifecycle (correction, hold, validation, transmission).
All business logic is delegated to consolidation_service and
record_lifecycle (3-layer architecture).

Endpoints:
  Consolidation:   POST /time-tracking/consolidate
                   POST /time-tracking/consolidate-batch
  Records:         GET  /time-tracking/records
                   PUT  /time-tracking/records/<id>
                   DELETE /time-tracking/records/<id>
  Lifecycle:       POST /time-tracking/records/<id>/on-hold
                   POST /time-tracking/records/<id>/release
                   POST /time-tracking/records/<id>/validate
  Maintenance:     POST /time-tracking/records/<id>/repair-times
                   POST /time-tracking/records/<id>/recalculate
                   GET  /time-tracking/records/<id>/verify
  Batches:         POST /time-tracking/records/repair-times-batch
                   POST /time-tracking/records/validate-batch
                   POST /time-tracking/records/transmit-batch
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    ClassificationUnavailable,
    ConflictError,
    NotFoundError,
    RecordLockedError,
    TransitionError,
    TransportIneligible,
    ValidationError,
)
from app.models import db
from app.services import consolidation_service, record_lifecycle
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

time_tracking_bp = Blueprint("time_tracking", __name__, url_prefix="/api/v1/time-tracking")

# ConsolidationResult.reason -> HTTP status for ERROR outcomes
_ERROR_STATUS = {
    consolidation_service.REASON_NO_EVENTS: 404,
    consolidation_service.REASON_VALIDATION: 422,
    consolidation_service.REASON_CLASSIFICATION: 503,
}


# ── Error handlers ────────────────────────────────────────────────────────────


@time_tracking_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@time_tracking_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@time_tracking_bp.errorhandler(RecordLockedError)
def _handle_locked(error: RecordLockedError):
    return api_error(E.RECORD_LOCKED, str(error), details={"status": error.current_status})


@time_tracking_bp.errorhandler(TransitionError)
def _handle_transition(error: TransitionError):
    return api_error(
        E.CONFLICT_STATE,
        str(error),
        details={"action": error.action, "status": error.current_status or "PENDING"},
    )


@time_tracking_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@time_tracking_bp.errorhandler(TransportIneligible)
def _handle_ineligible(error: TransportIneligible):
    return api_error(
        E.TRANSPORT_INELIGIBLE,
        str(error),
        details={"productive_duration_min": error.productive_duration_min},
    )


@time_tracking_bp.errorhandler(ClassificationUnavailable)
def _handle_classification(error: ClassificationUnavailable):
    return api_error(E.CLASSIFICATION_UNAVAILABLE, str(error))


@time_tracking_bp.errorhandler(SQLAlchemyError)
def _handle_database(error: SQLAlchemyError):
    db.session.rollback()
    logger.exception("Database error in time_tracking endpoint=%s", request.endpoint)
    return api_error(E.DATABASE, "Database error")


# ── Request helpers ───────────────────────────────────────────────────────────


def _ids_from_body():
    """Return (ids, error_response) from a {"ids": [int, ...]} body."""
    data = request.get_json(silent=True) or {}
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        return None, api_error(E.VALIDATION_REQUIRED, "ids must be a non-empty list")
    try:
        return [int(i) for i in ids], None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "ids must be integers")


_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


def _flag(data: dict, key: str, default: bool) -> bool:
    """Read a boolean body flag; "false" / "0" / "no" strings count as False.

    Raises:
        ValueError: the value is neither a bool nor a recognised string.
    """
    raw = data.get(key, default)
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower() if isinstance(raw, (str, int)) else None
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean")


# ═════════════════════════════════════════════════════════════════════════════
# Consolidation (2 routes)
# ═════════════════════════════════════════════════════════════════════════════


@time_tracking_bp.route("/consolidate", methods=["POST"])
def consolidate():
    """Consolidate one operator cycle.

    Body: { "operator_code": str, "launch_code": str, "phase"?: str,
            "sub_code"?: str, "work_date"?: "YYYY-MM-DD", "force"?: bool,
            "auto_fix"?: bool }
    Returns: ConsolidationResult dict. 201 CREATED, 200 ALREADY_EXISTS / SKIPPED,
             404 / 422 / 503 ERROR depending on the reason.
    """
    data = request.get_json(silent=True) or {}
    try:
        operator_code = consolidation_service.text_field(data, "operator_code")
        launch_code = consolidation_service.text_field(data, "launch_code")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    if not operator_code or not launch_code:
        return api_error(E.VALIDATION_REQUIRED, "operator_code and launch_code are required")
    try:
        scope = consolidation_service.scope_from_item(data)
        force = _flag(data, "force", False)
        auto_fix = _flag(data, "auto_fix", True)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    result = consolidation_service.consolidate(
        operator_code, launch_code, scope, force=force, auto_fix=auto_fix
    )
    if result.status == consolidation_service.STATUS_CREATED:
        status_code = 201
    elif result.status == consolidation_service.STATUS_ERROR:
        status_code = _ERROR_STATUS.get(result.reason, 500)
    else:
        status_code = 200
    return jsonify(result.to_dict()), status_code


@time_tracking_bp.route("/consolidate-batch", methods=["POST"])
def consolidate_batch():
    """Consolidate many cycles.

    Body: { "items": [{operator_code, launch_code, phase?, sub_code?, work_date?}, ...],
            "force"?: bool, "auto_fix"?: bool }
    Returns: { "created": [...], "skipped": [...], "errors": [...] }
    """
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list) or not items:
        return api_error(E.VALIDATION_REQUIRED, "items must be a non-empty list")
    try:
        force = _flag(data, "force", False)
        auto_fix = _flag(data, "auto_fix", True)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    buckets = consolidation_service.consolidate_batch(items, force=force, auto_fix=auto_fix)
    return jsonify(buckets), 200


# ═════════════════════════════════════════════════════════════════════════════
# Records (3 routes)
# ═════════════════════════════════════════════════════════════════════════════


@time_tracking_bp.route("/records", methods=["GET"])
def list_records():
    """List work time records.

    Query params: status? (PENDING | VALIDATED | ON_HOLD | TRANSMITTED),
                  operator_code?, launch_code?, work_date?, date_from?, date_to?
    Returns: { "items": [...], "total": int }
    """
    items = record_lifecycle.list_records(
        status=request.args.get("status"),
        operator_code=request.args.get("operator_code"),
        launch_code=request.args.get("launch_code"),
        work_date=request.args.get("work_date"),
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
    )
    return jsonify({"items": items, "total": len(items)}), 200


@time_tracking_bp.route("/records/<int:record_id>", methods=["PUT"])
def correct_record(record_id: int):
    """Apply a business correction.

    Body: any of phase, sub_code, total_duration_min, pause_duration_min,
          start_time, end_time. productive_duration_min is recomputed.
    Returns: updated record dict.
    """
    data = request.get_json(silent=True) or {}
    return jsonify(record_lifecycle.correct_record(record_id, data)), 200


@time_tracking_bp.route("/records/<int:record_id>", methods=["DELETE"])
def delete_record(record_id: int):
    """Delete a record that has not been transmitted; its events are kept."""
    return jsonify(record_lifecycle.delete_record(record_id)), 200


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle (3 routes)
# ═════════════════════════════════════════════════════════════════════════════


@time_tracking_bp.route("/records/<int:record_id>/on-hold", methods=["POST"])
def set_on_hold(record_id: int):
    return jsonify(record_lifecycle.set_on_hold(record_id)), 200


@time_tracking_bp.route("/records/<int:record_id>/release", methods=["POST"])
def release_hold(record_id: int):
    return jsonify(record_lifecycle.release_hold(record_id)), 200


@time_tracking_bp.route("/records/<int:record_id>/validate", methods=["POST"])
def validate_record(record_id: int):
    """Validate one record for transport.

    Body: { "auto_fix"?: bool }
    Returns: { "record": {...}, "fixes": [...] }
    """
    data = request.get_json(silent=True) or {}
    try:
        auto_fix = _flag(data, "auto_fix", True)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    result = record_lifecycle.validate_record(record_id, auto_fix=auto_fix)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# Maintenance (3 routes)
# ═════════════════════════════════════════════════════════════════════════════


@time_tracking_bp.route("/records/<int:record_id>/repair-times", methods=["POST"])
def repair_times(record_id: int):
    """Re-derive midnight-collapsed start / end times from the events."""
    return jsonify(record_lifecycle.repair_timestamps(record_id)), 200


@time_tracking_bp.route("/records/<int:record_id>/recalculate", methods=["POST"])
def recalculate(record_id: int):
    """Recompute durations from the record's events."""
    return jsonify(consolidation_service.recalculate_durations(record_id)), 200


@time_tracking_bp.route("/records/<int:record_id>/verify", methods=["GET"])
def verify(record_id: int):
    """Compare the stored record with its source events."""
    return jsonify(consolidation_service.verify_consolidation(record_id)), 200


# ═════════════════════════════════════════════════════════════════════════════
# Batches (3 routes)
# ═════════════════════════════════════════════════════════════════════════════


@time_tracking_bp.route("/records/repair-times-batch", methods=["POST"])
def repair_times_batch():
    """Body: { "ids": [int, ...] }. Returns: { repaired, unchanged, errors }."""
    ids, err = _ids_from_body()
    if err:
        return err
    return jsonify(record_lifecycle.repair_timestamps_batch(ids)), 200


@time_tracking_bp.route("/records/validate-batch", methods=["POST"])
def validate_batch():
    """Body: { "ids": [int, ...], "auto_fix"?: bool }. Returns: { validated, skipped, invalid }."""
    ids, err = _ids_from_body()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        auto_fix = _flag(data, "auto_fix", True)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    buckets = record_lifecycle.validate_and_transmit_batch(ids, auto_fix=auto_fix)
    return jsonify(buckets), 200


@time_tracking_bp.route("/records/transmit-batch", methods=["POST"])
def transmit_batch():
    """Body: { "ids": [int, ...] }. Returns: { transmitted, skipped, invalid }."""
    ids, err = _ids_from_body()
    if err:
        return err
    return jsonify(record_lifecycle.mark_transmitted_batch(ids)), 200
