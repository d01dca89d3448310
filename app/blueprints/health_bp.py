"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready : simple 200 for load balancers
    GET /api/v1/health/live  : dependency status (DB, tables, classification)
"""

import logging
import time

import sqlalchemy as sa
from flask import Blueprint, current_app, jsonify

from app.models import db
from app.models.launch_classification import LaunchClassification
from app.models.operator_event import OperatorEvent
from app.models.work_time import WorkTimeRecord

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

_REQUIRED_TABLES = (OperatorEvent.__tablename__, WorkTimeRecord.__tablename__)


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe: always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(sa.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except sa.exc.SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Tables ───────────────────────────────────────────────────────
    if overall:
        inspector = sa.inspect(db.engine)
        missing = [t for t in _REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            checks["tables"] = {"status": "error", "missing": missing}
            overall = False
        else:
            checks["tables"] = {"status": "ok"}

        # Classification mirror is optional: without it every launch is skipped
        backend = current_app.config.get("CLASSIFICATION_BACKEND", "table")
        if backend == "table":
            has_mirror = inspector.has_table(LaunchClassification.__tablename__)
            checks["classification"] = {
                "status": "ok" if has_mirror else "degraded",
                "backend": backend,
            }
        else:
            checks["classification"] = {
                "status": "ok" if current_app.config.get("CLASSIFICATION_SERVICE_URL") else "unconfigured",
                "backend": backend,
            }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Work Time Consolidation Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
