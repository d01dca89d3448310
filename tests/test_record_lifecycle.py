"""
Tests for the work time record lifecycle.

Covers:
  - list_records filters, "PENDING" selects NULL status
  - correct_record: productive recomputed, status reset, locked when transmitted
  - set_on_hold / release_hold transitions
  - delete_record: non-transmitted only, events kept
  - validate_record: auto-fix, transport rule, ON_HOLD refused
  - validate_and_transmit_batch / mark_transmitted_batch buckets
  - repair_timestamps: midnight start / end re-derived from the events,
    also on TRANSMITTED records
"""

from datetime import date, datetime

import pytest

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    RecordLockedError,
    TransitionError,
    TransportIneligible,
    ValidationError,
)
from app.models import db
from app.models.operator_event import OperatorEvent
from app.models.work_time import (
    STATUS_ON_HOLD,
    STATUS_TRANSMITTED,
    STATUS_VALIDATED,
    WorkTimeRecord,
)
from app.services import record_lifecycle as lifecycle

MIDNIGHT = datetime(2026, 3, 2, 0, 0)


def _status(record_id):
    return db.session.get(WorkTimeRecord, record_id).processing_status


# ═════════════════════════════════════════════════════════════════════════════
# list_records
# ═════════════════════════════════════════════════════════════════════════════


class TestListRecords:
    def test_pending_selects_null_status(self, add_record):
        pending = add_record(launch_code="LT1")
        add_record(launch_code="LT2", processing_status=STATUS_VALIDATED)
        items = lifecycle.list_records(status="pending")
        assert [i["id"] for i in items] == [pending.id]
        assert items[0]["processing_status"] == "PENDING"

    def test_filters(self, add_record):
        add_record(launch_code="LT1", work_date=date(2026, 3, 1))
        keep = add_record(launch_code="LT2", work_date=date(2026, 3, 5))
        add_record(launch_code="LT3", operator_code="OP9", work_date=date(2026, 3, 5))
        items = lifecycle.list_records(operator_code="OP1", date_from="2026-03-02")
        assert [i["id"] for i in items] == [keep.id]

    def test_ordered_newest_day_first(self, add_record):
        old = add_record(launch_code="LT1", work_date=date(2026, 3, 1))
        new = add_record(launch_code="LT2", work_date=date(2026, 3, 5))
        assert [i["id"] for i in lifecycle.list_records()] == [new.id, old.id]

    def test_invalid_status(self):
        with pytest.raises(ValidationError):
            lifecycle.list_records(status="SHIPPED")

    def test_invalid_date(self):
        with pytest.raises(ValidationError):
            lifecycle.list_records(work_date="yesterday")


# ═════════════════════════════════════════════════════════════════════════════
# correct_record
# ═════════════════════════════════════════════════════════════════════════════


class TestCorrectRecord:
    def test_productive_recomputed(self, add_record):
        record = add_record()
        result = lifecycle.correct_record(
            record.id, {"total_duration_min": 200, "productive_duration_min": 1}
        )
        assert result["total_duration_min"] == 200
        assert result["productive_duration_min"] == 185

    def test_pause_larger_than_total_clamps_to_zero(self, add_record):
        result = lifecycle.correct_record(add_record().id, {"pause_duration_min": 500})
        assert result["productive_duration_min"] == 0

    def test_validated_goes_back_to_pending(self, add_record):
        record = add_record(processing_status=STATUS_VALIDATED)
        result = lifecycle.correct_record(record.id, {"phase": "30"})
        assert result["processing_status"] == "PENDING"
        assert result["phase"] == "30"

    def test_transmitted_is_locked(self, add_record):
        record = add_record(processing_status=STATUS_TRANSMITTED)
        with pytest.raises(RecordLockedError):
            lifecycle.correct_record(record.id, {"total_duration_min": 10})
        assert db.session.get(WorkTimeRecord, record.id).total_duration_min == 180

    def test_no_editable_field(self, add_record):
        with pytest.raises(ValidationError):
            lifecycle.correct_record(add_record().id, {"operator_code": "OP2"})

    def test_negative_duration_rejected(self, add_record):
        with pytest.raises(ValidationError):
            lifecycle.correct_record(add_record().id, {"pause_duration_min": -5})

    def test_end_before_start_rejected(self, add_record):
        with pytest.raises(ValidationError):
            lifecycle.correct_record(add_record().id, {"end_time": "2026-03-02T08:00:00"})

    def test_natural_key_clash_is_conflict(self, add_record):
        add_record(phase="10", sub_code="R01")
        other = add_record(phase="20", sub_code="M05", start_time=datetime(2026, 3, 2, 13, 0),
                           end_time=datetime(2026, 3, 2, 14, 0))
        with pytest.raises(ConflictError):
            lifecycle.correct_record(other.id, {"phase": "10", "sub_code": "R01"})

    def test_unknown_record(self):
        with pytest.raises(NotFoundError):
            lifecycle.correct_record(999, {"phase": "10"})


# ═════════════════════════════════════════════════════════════════════════════
# hold / release
# ═════════════════════════════════════════════════════════════════════════════


class TestHold:
    def test_hold_and_release(self, add_record):
        record = add_record()
        assert lifecycle.set_on_hold(record.id)["processing_status"] == STATUS_ON_HOLD
        assert lifecycle.release_hold(record.id)["processing_status"] == "PENDING"

    def test_hold_validated(self, add_record):
        record = add_record(processing_status=STATUS_VALIDATED)
        assert lifecycle.set_on_hold(record.id)["processing_status"] == STATUS_ON_HOLD

    def test_release_requires_on_hold(self, add_record):
        with pytest.raises(TransitionError):
            lifecycle.release_hold(add_record().id)

    def test_hold_transmitted_is_locked(self, add_record):
        record = add_record(processing_status=STATUS_TRANSMITTED)
        with pytest.raises(RecordLockedError):
            lifecycle.set_on_hold(record.id)


class TestDeleteRecord:
    def test_delete_pending(self, add_record, add_event):
        add_event("START", "09:00")
        record = add_record()
        assert lifecycle.delete_record(record.id) == {"deleted": True, "id": record.id}
        assert db.session.get(WorkTimeRecord, record.id) is None
        assert db.session.query(OperatorEvent).count() == 1

    def test_delete_transmitted_is_locked(self, add_record):
        record = add_record(processing_status=STATUS_TRANSMITTED)
        with pytest.raises(RecordLockedError):
            lifecycle.delete_record(record.id)
        assert _status(record.id) == STATUS_TRANSMITTED

    def test_delete_unknown(self):
        with pytest.raises(NotFoundError):
            lifecycle.delete_record(4242)


# ═════════════════════════════════════════════════════════════════════════════
# validation for transport
# ═════════════════════════════════════════════════════════════════════════════


class TestValidateRecord:
    def test_pending_becomes_validated(self, add_record):
        record = add_record()
        result = lifecycle.validate_record(record.id)
        assert result["record"]["processing_status"] == STATUS_VALIDATED
        assert result["fixes"] == []

    def test_inconsistent_productive_is_fixed(self, add_record):
        record = add_record(productive_duration_min=100)
        result = lifecycle.validate_record(record.id)
        assert result["record"]["productive_duration_min"] == 165
        assert "productive_duration_min: 100 -> 165" in result["fixes"]

    def test_inconsistent_without_auto_fix(self, add_record):
        record = add_record(productive_duration_min=100)
        with pytest.raises(ValidationError):
            lifecycle.validate_record(record.id, auto_fix=False)
        assert _status(record.id) is None

    def test_zero_productive_is_ineligible(self, add_record):
        record = add_record(total_duration_min=0, pause_duration_min=0, productive_duration_min=0)
        with pytest.raises(TransportIneligible):
            lifecycle.validate_record(record.id)
        assert _status(record.id) is None

    def test_on_hold_refused(self, add_record):
        record = add_record(processing_status=STATUS_ON_HOLD)
        with pytest.raises(TransitionError):
            lifecycle.validate_record(record.id)


class TestValidateBatch:
    def test_buckets_and_batch_continues(self, add_record):
        ok = add_record(launch_code="LT1")
        zero = add_record(launch_code="LT2", total_duration_min=0, pause_duration_min=0,
                          productive_duration_min=0)
        held = add_record(launch_code="LT3", processing_status=STATUS_ON_HOLD)
        sent = add_record(launch_code="LT4", processing_status=STATUS_TRANSMITTED)
        later = add_record(launch_code="LT5")

        buckets = lifecycle.validate_and_transmit_batch([ok.id, zero.id, held.id, sent.id, 9999, later.id])

        assert [v["id"] for v in buckets["validated"]] == [ok.id, later.id]
        invalid = {i["id"]: i for i in buckets["invalid"]}
        assert invalid[zero.id]["reason"] == "TransportIneligible"
        assert invalid[9999]["reason"] == "NotFoundError"
        skipped = {s["id"]: s for s in buckets["skipped"]}
        assert skipped[held.id]["reason"] == "TransitionError"
        assert skipped[held.id]["status"] == STATUS_ON_HOLD
        assert skipped[sent.id]["reason"] == "RecordLockedError"
        assert _status(zero.id) is None
        assert _status(later.id) == STATUS_VALIDATED

    def test_unfixable_record_is_invalid(self, add_record):
        record = add_record(productive_duration_min=100)
        buckets = lifecycle.validate_and_transmit_batch([record.id], auto_fix=False)
        assert buckets["invalid"][0]["reason"] == "ValidationError"
        assert buckets["invalid"][0]["errors"]


class TestTransmitBatch:
    def test_buckets(self, add_record):
        validated = add_record(launch_code="LT1", processing_status=STATUS_VALIDATED)
        pending = add_record(launch_code="LT2")
        zero = add_record(launch_code="LT3", processing_status=STATUS_VALIDATED,
                          total_duration_min=0, pause_duration_min=0, productive_duration_min=0)

        buckets = lifecycle.mark_transmitted_batch([validated.id, pending.id, zero.id, 9999])

        assert buckets["transmitted"] == [{"id": validated.id}]
        assert buckets["skipped"][0]["id"] == pending.id
        assert buckets["skipped"][0]["status"] == "PENDING"
        invalid = {i["id"]: i["reason"] for i in buckets["invalid"]}
        assert invalid == {zero.id: "TransportIneligible", 9999: "NotFoundError"}
        assert _status(validated.id) == STATUS_TRANSMITTED
        assert _status(zero.id) == STATUS_VALIDATED

    def test_transmitted_record_cannot_be_edited(self, add_record):
        record = add_record(processing_status=STATUS_VALIDATED)
        lifecycle.mark_transmitted_batch([record.id])
        with pytest.raises(RecordLockedError):
            lifecycle.correct_record(record.id, {"phase": "99"})


# ═════════════════════════════════════════════════════════════════════════════
# timestamp repair
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def midnight_record(add_event, add_record):
    """Events captured date-only (created_at at 00:00) plus the record built from them."""
    start = add_event("START", created_at=MIDNIGHT, event_time="08:00")
    finish = add_event("FINISH", created_at=MIDNIGHT, event_time="16:00")
    record = add_record(
        start_time=MIDNIGHT,
        end_time=MIDNIGHT,
        total_duration_min=0,
        pause_duration_min=0,
        productive_duration_min=0,
        events_count=2,
    )
    return record, start.id, finish.id


class TestRepairTimestamps:
    def test_rederives_start_and_end(self, midnight_record):
        record, start_id, finish_id = midnight_record
        result = lifecycle.repair_timestamps(record.id)

        assert result["repaired"]
        assert result["record"]["start_time"] == "2026-03-02T08:00:00"
        assert result["record"]["end_time"] == "2026-03-02T16:00:00"
        assert result["record"]["productive_duration_min"] == 480
        assert {r["event_id"] for r in result["event_rewrites"]} == {start_id, finish_id}
        assert db.session.get(OperatorEvent, start_id).created_at.hour == 8

    def test_second_run_is_a_no_op(self, midnight_record):
        record, _, _ = midnight_record
        lifecycle.repair_timestamps(record.id)
        again = lifecycle.repair_timestamps(record.id)
        assert not again["repaired"]
        assert again["changes"] == {}

    def test_transmitted_record_is_repaired_and_stays_transmitted(self, midnight_record):
        record, _, _ = midnight_record
        db.session.get(WorkTimeRecord, record.id).processing_status = STATUS_TRANSMITTED
        db.session.commit()
        result = lifecycle.repair_timestamps(record.id)
        assert result["repaired"]
        assert result["record"]["total_duration_min"] == 480
        assert _status(record.id) == STATUS_TRANSMITTED

    def test_record_without_midnight_times(self, add_record):
        result = lifecycle.repair_timestamps(add_record().id)
        assert not result["repaired"]

    def test_batch(self, midnight_record, add_record):
        record, _, _ = midnight_record
        clean = add_record(launch_code="LT9")
        buckets = lifecycle.repair_timestamps_batch([record.id, clean.id, 9999])
        assert [r["id"] for r in buckets["repaired"]] == [record.id]
        assert [u["id"] for u in buckets["unchanged"]] == [clean.id]
        assert buckets["errors"][0]["reason"] == "NotFoundError"

    def test_validation_repairs_midnight_record(self, midnight_record):
        record, _, _ = midnight_record
        db.session.get(WorkTimeRecord, record.id).productive_duration_min = 1
        db.session.get(WorkTimeRecord, record.id).total_duration_min = 1
        db.session.commit()
        result = lifecycle.validate_record(record.id)
        assert result["record"]["processing_status"] == STATUS_VALIDATED
        assert result["record"]["productive_duration_min"] == 480
