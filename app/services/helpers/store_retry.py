"""
Bounded retry for record-store calls.

Transient database failures (deadlock victim, lock timeout, dropped
connection) surface as ``sqlalchemy.exc.OperationalError``. They are retried
a small number of times with exponential backoff; every other error
propagates on the first occurrence. The session is rolled back between
attempts so a retried unit of work starts clean.

Constants (overridable through app config):
    STORE_RETRY_MAX             = 2    extra attempts after the first failure
    STORE_RETRY_BACKOFF_SECONDS = 0.2  base delay, doubled per attempt

Usage:
    from app.services.helpers.store_retry import run_with_store_retry

    rows = run_with_store_retry(lambda: db.session.execute(stmt).scalars().all(),
                                operation="load_events")
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError

from app.models import db

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_RETRY_MAX = 2
_DEFAULT_BACKOFF_SECONDS = 0.2


def _retry_settings() -> tuple[int, float]:
    if not has_app_context():
        return _DEFAULT_RETRY_MAX, _DEFAULT_BACKOFF_SECONDS
    cfg = current_app.config
    return (
        int(cfg.get("STORE_RETRY_MAX", _DEFAULT_RETRY_MAX)),
        float(cfg.get("STORE_RETRY_BACKOFF_SECONDS", _DEFAULT_BACKOFF_SECONDS)),
    )


def run_with_store_retry(fn: Callable[[], T], *, operation: str = "store_call") -> T:
    """Run ``fn`` and retry it on OperationalError with exponential backoff.

    Args:
        fn: Zero-argument callable performing the store work.
        operation: Label used in log records.

    Returns:
        Whatever ``fn`` returns.

    Raises:
        OperationalError: When every attempt failed.
        Exception: Any non-transient error raised by ``fn``, unchanged.
    """
    retry_max, backoff = _retry_settings()
    for attempt in range(retry_max + 1):
        try:
            return fn()
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= retry_max:
                logger.error(
                    "Store call %s failed after %d attempts: %s",
                    operation, attempt + 1, exc.orig,
                )
                raise
            delay = backoff * (2 ** attempt)
            logger.warning(
                "Store call %s failed attempt=%d/%d, retrying in %.2fs: %s",
                operation, attempt + 1, retry_max + 1, delay, exc.orig,
            )
            time.sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
