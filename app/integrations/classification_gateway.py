"""Launch classification gateway.

Resolves the authoritative (phase, sub_code) of a launch when the operator
events do not carry a trustworthy pair. Two backends, selected by the
``CLASSIFICATION_BACKEND`` config key:

    table  TableClassificationGateway reads the ``launch_classifications``
           mirror synchronised from the production-planning system.
    http   HttpClassificationGateway calls the planning system's REST API.

Result contract:
    APPLICABLE(phase, sub_code)   consolidate with this pair
    NOT_APPLICABLE(reason)        skip the cycle (component launch, closed
                                  launch, unknown launch, mapping missing)
    ClassificationUnavailable     raised when the backend itself fails

HTTP backend constants:
    timeout    = CLASSIFICATION_TIMEOUT_SECONDS (default 10 s)
    retry_max  = 2       extra attempts after the first failure
    backoff    = [0.5, 2] seconds
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import requests
import sqlalchemy as sa
from flask import current_app

from app.core.exceptions import ClassificationUnavailable
from app.models import db
from app.models.launch_classification import LaunchClassification

logger = logging.getLogger(__name__)

APPLICABLE = "APPLICABLE"
NOT_APPLICABLE = "NOT_APPLICABLE"

REASON_MAPPING_UNAVAILABLE = "mapping_unavailable"
REASON_UNKNOWN_LAUNCH = "unknown_launch"
REASON_COMPONENT = "component_launch"
REASON_CLOSED = "launch_closed"

_DEFAULT_TIMEOUT = 10
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [0.5, 2]


# ── Value objects ─────────────────────────────────────────────────────────────


class ClassificationResult:
    """Tagged classification outcome. Check ``.applicable`` before reading the pair."""

    __slots__ = ("kind", "phase", "sub_code", "reason")

    def __init__(
        self,
        *,
        kind: str,
        phase: str | None = None,
        sub_code: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.kind = kind
        self.phase = phase
        self.sub_code = sub_code
        self.reason = reason

    @classmethod
    def applicable(cls, phase: str, sub_code: str) -> "ClassificationResult":
        return cls(kind=APPLICABLE, phase=phase, sub_code=sub_code)

    @classmethod
    def not_applicable(cls, reason: str) -> "ClassificationResult":
        return cls(kind=NOT_APPLICABLE, reason=reason)

    @property
    def is_applicable(self) -> bool:
        return self.kind == APPLICABLE

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "phase": self.phase,
            "sub_code": self.sub_code,
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        if self.is_applicable:
            return f"<ClassificationResult APPLICABLE {self.phase}/{self.sub_code}>"
        return f"<ClassificationResult NOT_APPLICABLE {self.reason}>"


class ClassificationGateway(ABC):
    """Interface every classification backend implements."""

    @abstractmethod
    def resolve(self, launch_code: str) -> ClassificationResult:
        """Classify one launch.

        Raises:
            ClassificationUnavailable: backend failure (not a business outcome).
        """


# ── Table backend ─────────────────────────────────────────────────────────────


class TableClassificationGateway(ClassificationGateway):
    """Reads the local ``launch_classifications`` mirror."""

    def resolve(self, launch_code: str) -> ClassificationResult:
        try:
            has_table = sa.inspect(db.engine).has_table(LaunchClassification.__tablename__)
        except sa.exc.SQLAlchemyError as exc:
            raise ClassificationUnavailable(f"classification store unreachable: {exc}") from exc

        if not has_table:
            logger.warning(
                "Launch classification table missing, treating launch as not applicable",
                extra={"launch_code": launch_code, "reason": REASON_MAPPING_UNAVAILABLE},
            )
            return ClassificationResult.not_applicable(REASON_MAPPING_UNAVAILABLE)

        try:
            row = db.session.execute(
                sa.select(LaunchClassification).where(
                    LaunchClassification.launch_code == launch_code
                )
            ).scalar_one_or_none()
        except sa.exc.SQLAlchemyError as exc:
            raise ClassificationUnavailable(f"classification lookup failed: {exc}") from exc

        if row is None:
            return ClassificationResult.not_applicable(REASON_UNKNOWN_LAUNCH)
        if row.is_component:
            return ClassificationResult.not_applicable(REASON_COMPONENT)
        if row.is_closed:
            return ClassificationResult.not_applicable(REASON_CLOSED)
        return ClassificationResult.applicable(row.phase, row.sub_code)


# ── HTTP backend ──────────────────────────────────────────────────────────────


class HttpClassificationGateway(ClassificationGateway):
    """Calls ``GET {base_url}/launches/{launch_code}/classification``.

    Expected payload: ``{"phase": ..., "sub_code": ..., "applicable": bool,
    "reason": ...}``; ``applicable`` defaults to true. 404 means the planning
    system does not know the launch.

    In tests, inject a fake session:
        gw = HttpClassificationGateway("http://planning", session=FakeSession())
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        backoff: list[float] | None = None,
    ) -> None:
        if not base_url:
            raise ClassificationUnavailable("CLASSIFICATION_SERVICE_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.backoff = _RETRY_BACKOFF_SECONDS if backoff is None else backoff

    def _url(self, launch_code: str) -> str:
        return f"{self.base_url}/launches/{launch_code}/classification"

    def resolve(self, launch_code: str) -> ClassificationResult:
        url = self._url(launch_code)
        last_error = "Unknown error"

        for attempt in range(_RETRY_MAX + 1):
            try:
                resp = self.session.get(
                    url, headers={"Accept": "application/json"}, timeout=self.timeout
                )
                if resp.status_code == 404:
                    return ClassificationResult.not_applicable(REASON_UNKNOWN_LAUNCH)
                if resp.ok:
                    return self._parse(launch_code, resp)
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                if 400 <= resp.status_code < 500:
                    break
                logger.warning(
                    "Classification request failed attempt=%d/%d status=%d url=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, url,
                )
            except requests.Timeout:
                last_error = f"Request timed out after {self.timeout}s"
                logger.warning(
                    "Classification request timed out attempt=%d/%d url=%s",
                    attempt + 1, _RETRY_MAX + 1, url,
                )
            except requests.RequestException as exc:
                last_error = str(exc)[:200]
                logger.warning(
                    "Classification network error attempt=%d/%d url=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, url, last_error,
                )

            if attempt < _RETRY_MAX and self.backoff:
                time.sleep(self.backoff[min(attempt, len(self.backoff) - 1)])

        logger.error(
            "Classification service unavailable",
            extra={"launch_code": launch_code, "reason": last_error},
        )
        raise ClassificationUnavailable(last_error)

    @staticmethod
    def _parse(launch_code: str, resp: Any) -> ClassificationResult:
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ClassificationUnavailable(f"invalid JSON for launch {launch_code}") from exc

        if not payload.get("applicable", True):
            return ClassificationResult.not_applicable(payload.get("reason") or "not_applicable")
        phase = (payload.get("phase") or "").strip()
        sub_code = (payload.get("sub_code") or "").strip()
        if not phase or not sub_code:
            raise ClassificationUnavailable(
                f"incomplete classification for launch {launch_code}: {payload}"
            )
        return ClassificationResult.applicable(phase, sub_code)


# ── Factory ───────────────────────────────────────────────────────────────────


def get_classification_gateway() -> ClassificationGateway:
    """Build the gateway configured for the current app."""
    cfg = current_app.config
    backend = (cfg.get("CLASSIFICATION_BACKEND") or "table").lower()
    if backend == "http":
        return HttpClassificationGateway(
            cfg.get("CLASSIFICATION_SERVICE_URL") or "",
            timeout=float(cfg.get("CLASSIFICATION_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT)),
        )
    if backend == "table":
        return TableClassificationGateway()
    raise ClassificationUnavailable(f"Unknown CLASSIFICATION_BACKEND '{backend}'")
