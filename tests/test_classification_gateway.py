"""
Tests for the launch classification gateway.

Covers:
  - table backend: applicable, unknown, component, closed, missing table
  - HTTP backend with a fake session: success, 404, not applicable,
    5xx retried then unavailable, 4xx not retried, timeout, bad payload
  - factory honours CLASSIFICATION_BACKEND
"""

import pytest
import requests

from app.core.exceptions import ClassificationUnavailable
from app.integrations.classification_gateway import (
    REASON_CLOSED,
    REASON_COMPONENT,
    REASON_MAPPING_UNAVAILABLE,
    REASON_UNKNOWN_LAUNCH,
    HttpClassificationGateway,
    TableClassificationGateway,
    get_classification_gateway,
)
from app.models import db
from app.models.launch_classification import LaunchClassification


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append(url)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def http_gateway(*responses):
    session = FakeSession(*responses)
    return HttpClassificationGateway("http://planning/api/", session=session, backoff=[]), session


# ── Table backend ─────────────────────────────────────────────────────────────


class TestTableGateway:
    def test_applicable(self, add_classification):
        add_classification("LT100", phase="20", sub_code="M05")
        result = TableClassificationGateway().resolve("LT100")
        assert result.is_applicable
        assert (result.phase, result.sub_code) == ("20", "M05")

    def test_unknown_launch(self):
        result = TableClassificationGateway().resolve("NOPE")
        assert not result.is_applicable
        assert result.reason == REASON_UNKNOWN_LAUNCH

    def test_component_launch(self, add_classification):
        add_classification("LT200", is_component=True)
        assert TableClassificationGateway().resolve("LT200").reason == REASON_COMPONENT

    def test_closed_launch(self, add_classification):
        add_classification("LT300", is_closed=True)
        assert TableClassificationGateway().resolve("LT300").reason == REASON_CLOSED

    def test_missing_table_is_not_applicable(self):
        LaunchClassification.__table__.drop(db.engine)
        result = TableClassificationGateway().resolve("LT100")
        assert not result.is_applicable
        assert result.reason == REASON_MAPPING_UNAVAILABLE


# ── HTTP backend ──────────────────────────────────────────────────────────────


class TestHttpGateway:
    def test_applicable_payload(self):
        gw, session = http_gateway(FakeResponse(200, {"phase": "20", "sub_code": "M05"}))
        result = gw.resolve("LT100")
        assert result.is_applicable
        assert result.to_dict()["sub_code"] == "M05"
        assert session.calls == ["http://planning/api/launches/LT100/classification"]

    def test_not_applicable_payload(self):
        gw, _ = http_gateway(FakeResponse(200, {"applicable": False, "reason": "component_launch"}))
        result = gw.resolve("LT100")
        assert not result.is_applicable
        assert result.reason == "component_launch"

    def test_404_is_unknown_launch(self):
        gw, session = http_gateway(FakeResponse(404))
        assert gw.resolve("LT100").reason == REASON_UNKNOWN_LAUNCH
        assert len(session.calls) == 1

    def test_server_errors_are_retried_then_unavailable(self):
        gw, session = http_gateway(FakeResponse(503), FakeResponse(502), FakeResponse(500, text="boom"))
        with pytest.raises(ClassificationUnavailable, match="HTTP 500"):
            gw.resolve("LT100")
        assert len(session.calls) == 3

    def test_transient_error_then_success(self):
        gw, session = http_gateway(
            requests.Timeout(),
            FakeResponse(200, {"phase": "20", "sub_code": "M05"}),
        )
        assert gw.resolve("LT100").is_applicable
        assert len(session.calls) == 2

    def test_client_error_not_retried(self):
        gw, session = http_gateway(FakeResponse(400, text="bad launch code"))
        with pytest.raises(ClassificationUnavailable):
            gw.resolve("LT100")
        assert len(session.calls) == 1

    def test_connection_errors_exhaust_retries(self):
        gw, session = http_gateway(
            requests.ConnectionError("refused"),
            requests.ConnectionError("refused"),
            requests.ConnectionError("refused"),
        )
        with pytest.raises(ClassificationUnavailable, match="refused"):
            gw.resolve("LT100")
        assert len(session.calls) == 3

    def test_incomplete_payload_is_unavailable(self):
        gw, _ = http_gateway(FakeResponse(200, {"phase": "20"}))
        with pytest.raises(ClassificationUnavailable, match="incomplete"):
            gw.resolve("LT100")

    def test_missing_base_url(self):
        with pytest.raises(ClassificationUnavailable):
            HttpClassificationGateway("")


# ── Factory ───────────────────────────────────────────────────────────────────


class TestFactory:
    def test_table_backend_by_default(self):
        assert isinstance(get_classification_gateway(), TableClassificationGateway)

    def test_http_backend(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "CLASSIFICATION_BACKEND", "http")
        monkeypatch.setitem(app.config, "CLASSIFICATION_SERVICE_URL", "http://planning")
        gw = get_classification_gateway()
        assert isinstance(gw, HttpClassificationGateway)
        assert gw.base_url == "http://planning"

    def test_unknown_backend(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "CLASSIFICATION_BACKEND", "carrier-pigeon")
        with pytest.raises(ClassificationUnavailable):
            get_classification_gateway()
