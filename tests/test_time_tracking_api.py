"""
HTTP tests for the time tracking blueprint and health endpoints.

Covers:
  - consolidate / consolidate-batch status codes per outcome
  - record listing, correction, hold / release, validation, deletion
  - typed request fields and boolean flags rejected with 400 when malformed
  - maintenance routes (repair-times, recalculate, verify)
  - batch routes and their request validation
  - error envelope {"error", "code", "details"} per exception type
"""

from datetime import datetime

import pytest

from app.models.work_time import STATUS_TRANSMITTED, STATUS_VALIDATED

BASE = "/api/v1/time-tracking"


@pytest.fixture()
def standard_cycle(add_event):
    add_event("START", "09:00")
    add_event("PAUSE", "10:00")
    add_event("RESUME", "10:15")
    add_event("FINISH", "12:00")


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


def test_health_ready(client):
    res = client.get("/api/v1/health/ready")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_health_live(client):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    body = res.get_json()
    assert body["checks"]["database"]["status"] == "ok"
    assert body["checks"]["tables"]["status"] == "ok"
    assert body["checks"]["classification"]["backend"] == "table"


# ═════════════════════════════════════════════════════════════════════════════
# Consolidation
# ═════════════════════════════════════════════════════════════════════════════


class TestConsolidateApi:
    def test_created_then_already_exists(self, client, standard_cycle):
        payload = {"operator_code": "OP1", "launch_code": "LT100"}
        res = client.post(f"{BASE}/consolidate", json=payload)
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "CREATED"
        assert body["record"]["productive_duration_min"] == 165

        res = client.post(f"{BASE}/consolidate", json=payload)
        assert res.status_code == 200
        assert res.get_json()["status"] == "ALREADY_EXISTS"
        assert res.get_json()["record"]["id"] == body["record"]["id"]

    def test_missing_keys(self, client):
        res = client.post(f"{BASE}/consolidate", json={"operator_code": "OP1"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_bad_work_date(self, client):
        res = client.post(
            f"{BASE}/consolidate",
            json={"operator_code": "OP1", "launch_code": "LT100", "work_date": "31/02"},
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_no_events_is_404(self, client):
        res = client.post(f"{BASE}/consolidate", json={"operator_code": "OP1", "launch_code": "LT100"})
        assert res.status_code == 404
        assert res.get_json()["reason"] == "NoEvents"

    def test_invalid_cycle_is_422(self, client, add_event):
        add_event("FINISH", "12:00")
        res = client.post(f"{BASE}/consolidate", json={"operator_code": "OP1", "launch_code": "LT100"})
        assert res.status_code == 422
        assert res.get_json()["reason"] == "ValidationError"

    def test_not_applicable_is_200_skipped(self, client, add_event):
        add_event("START", "09:00", sub_code="OP1")
        add_event("FINISH", "10:00", sub_code="OP1")
        res = client.post(f"{BASE}/consolidate", json={"operator_code": "OP1", "launch_code": "LT100"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "SKIPPED"

    @pytest.mark.parametrize("payload", [
        {"operator_code": "OP1", "launch_code": "LT100", "phase": 10},
        {"operator_code": "OP1", "launch_code": "LT100", "sub_code": ["R01"]},
        {"operator_code": 7, "launch_code": "LT100"},
        {"operator_code": "OP1", "launch_code": "LT100", "auto_fix": "maybe"},
    ])
    def test_wrongly_typed_fields_are_400(self, client, payload):
        res = client.post(f"{BASE}/consolidate", json=payload)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_force_false_string_is_false(self, client, standard_cycle):
        payload = {"operator_code": "OP1", "launch_code": "LT100"}
        first = client.post(f"{BASE}/consolidate", json=payload).get_json()
        res = client.post(f"{BASE}/consolidate", json={**payload, "force": "false"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "ALREADY_EXISTS"
        assert res.get_json()["record"]["id"] == first["record"]["id"]

    def test_non_json_body_rejected(self, client):
        res = client.post(f"{BASE}/consolidate", data="operator_code=OP1", content_type="text/plain")
        assert res.status_code == 415

    def test_batch(self, client, standard_cycle):
        res = client.post(f"{BASE}/consolidate-batch", json={"items": [
            {"operator_code": "OP1", "launch_code": "LT100"},
            {"operator_code": "OP1", "launch_code": "LT404"},
        ]})
        assert res.status_code == 200
        body = res.get_json()
        assert len(body["created"]) == 1
        assert body["errors"][0]["reason"] == "NoEvents"

    def test_batch_requires_items(self, client):
        res = client.post(f"{BASE}/consolidate-batch", json={"items": []})
        assert res.status_code == 400

    def test_batch_rejects_bad_flag(self, client):
        res = client.post(f"{BASE}/consolidate-batch", json={
            "items": [{"operator_code": "OP1", "launch_code": "LT100"}],
            "force": "sometimes",
        })
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


# ═════════════════════════════════════════════════════════════════════════════
# Records
# ═════════════════════════════════════════════════════════════════════════════


class TestRecordsApi:
    def test_list_pending(self, client, add_record):
        pending = add_record(launch_code="LT1")
        add_record(launch_code="LT2", processing_status=STATUS_VALIDATED)
        res = client.get(f"{BASE}/records?status=PENDING")
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["items"][0]["id"] == pending.id

    def test_list_invalid_status(self, client):
        res = client.get(f"{BASE}/records?status=LOST")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_RULE"

    def test_correct(self, client, add_record):
        record = add_record()
        res = client.put(f"{BASE}/records/{record.id}", json={"pause_duration_min": 30})
        assert res.status_code == 200
        assert res.get_json()["productive_duration_min"] == 150

    def test_correct_transmitted_is_409(self, client, add_record):
        record = add_record(processing_status=STATUS_TRANSMITTED)
        res = client.put(f"{BASE}/records/{record.id}", json={"phase": "20"})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_RECORD_LOCKED"
        assert body["details"]["status"] == "TRANSMITTED"

    def test_unknown_record_is_404(self, client):
        res = client.put(f"{BASE}/records/777", json={"phase": "20"})
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_hold_release(self, client, add_record):
        record = add_record()
        res = client.post(f"{BASE}/records/{record.id}/on-hold")
        assert res.get_json()["processing_status"] == "ON_HOLD"
        res = client.post(f"{BASE}/records/{record.id}/release")
        assert res.get_json()["processing_status"] == "PENDING"
        res = client.post(f"{BASE}/records/{record.id}/release")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_validate(self, client, add_record):
        record = add_record()
        res = client.post(f"{BASE}/records/{record.id}/validate", json={})
        assert res.status_code == 200
        assert res.get_json()["record"]["processing_status"] == "VALIDATED"

    def test_delete(self, client, add_record):
        record = add_record()
        res = client.delete(f"{BASE}/records/{record.id}")
        assert res.status_code == 200
        assert res.get_json()["deleted"] is True
        assert client.delete(f"{BASE}/records/{record.id}").status_code == 404

    def test_delete_transmitted_is_409(self, client, add_record):
        record = add_record(processing_status=STATUS_TRANSMITTED)
        res = client.delete(f"{BASE}/records/{record.id}")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_RECORD_LOCKED"

    def test_validate_auto_fix_false_string(self, client, add_record):
        record = add_record()
        res = client.post(f"{BASE}/records/{record.id}/validate", json={"auto_fix": "false"})
        assert res.status_code == 200
        assert res.get_json()["fixes"] == []

    def test_validate_zero_productive_is_422(self, client, add_record):
        record = add_record(total_duration_min=0, pause_duration_min=0, productive_duration_min=0)
        res = client.post(f"{BASE}/records/{record.id}/validate", json={})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_TRANSPORT_INELIGIBLE"


# ═════════════════════════════════════════════════════════════════════════════
# Maintenance + batches
# ═════════════════════════════════════════════════════════════════════════════


class TestMaintenanceApi:
    def test_recalculate_and_verify(self, client, standard_cycle):
        record = client.post(
            f"{BASE}/consolidate", json={"operator_code": "OP1", "launch_code": "LT100"}
        ).get_json()["record"]

        res = client.get(f"{BASE}/records/{record['id']}/verify")
        assert res.status_code == 200
        assert res.get_json()["valid"] is True

        res = client.post(f"{BASE}/records/{record['id']}/recalculate")
        assert res.status_code == 200
        assert res.get_json()["changes"] == {}

    def test_repair_times(self, client, add_event, add_record):
        midnight = datetime(2026, 3, 2, 0, 0)
        add_event("START", created_at=midnight, event_time="07:30")
        add_event("FINISH", created_at=midnight, event_time="15:30")
        record = add_record(start_time=midnight, end_time=midnight, total_duration_min=0,
                            pause_duration_min=0, productive_duration_min=0, events_count=2)
        res = client.post(f"{BASE}/records/{record.id}/repair-times")
        assert res.status_code == 200
        body = res.get_json()
        assert body["repaired"] is True
        assert body["record"]["total_duration_min"] == 480

    def test_validate_batch(self, client, add_record):
        ok = add_record(launch_code="LT1")
        zero = add_record(launch_code="LT2", total_duration_min=0, pause_duration_min=0,
                          productive_duration_min=0)
        res = client.post(f"{BASE}/records/validate-batch", json={"ids": [ok.id, zero.id]})
        assert res.status_code == 200
        body = res.get_json()
        assert [v["id"] for v in body["validated"]] == [ok.id]
        assert body["invalid"][0]["reason"] == "TransportIneligible"

    def test_transmit_batch(self, client, add_record):
        record = add_record(processing_status=STATUS_VALIDATED)
        res = client.post(f"{BASE}/records/transmit-batch", json={"ids": [record.id]})
        assert res.get_json()["transmitted"] == [{"id": record.id}]

    def test_repair_batch(self, client, add_record):
        record = add_record()
        res = client.post(f"{BASE}/records/repair-times-batch", json={"ids": [record.id]})
        assert res.get_json()["unchanged"][0]["id"] == record.id

    @pytest.mark.parametrize("payload,code", [
        ({}, "ERR_VALIDATION_REQUIRED"),
        ({"ids": []}, "ERR_VALIDATION_REQUIRED"),
        ({"ids": ["abc"]}, "ERR_VALIDATION_INVALID"),
    ])
    def test_batch_ids_validation(self, client, payload, code):
        res = client.post(f"{BASE}/records/transmit-batch", json=payload)
        assert res.status_code == 400
        assert res.get_json()["code"] == code
