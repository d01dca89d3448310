"""
Startup diagnostics: runs once when the Flask app starts.

Checks the record store and the classification backend and logs a summary
banner.
"""

import logging
import sys

import sqlalchemy as sa
from flask import Flask

from app.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(sa.text("SELECT 1"))
        except sa.exc.SQLAlchemyError as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Tables ───────────────────────────────────────────────────
        table_count = "?"
        has_mirror = False
        if db_status == "ok":
            inspector = sa.inspect(db.engine)
            tables = inspector.get_table_names()
            table_count = str(len(tables))
            if "work_time_records" not in tables:
                issues.append("work_time_records missing: run 'flask db upgrade'")
            has_mirror = "launch_classifications" in tables

        # ── Classification backend ───────────────────────────────────
        backend = app.config.get("CLASSIFICATION_BACKEND", "table")
        if backend == "table":
            classification = "table mirror" if has_mirror else "table MISSING"
            if not has_mirror:
                issues.append("launch_classifications missing: unclassified launches will be skipped")
        else:
            url = app.config.get("CLASSIFICATION_SERVICE_URL") or ""
            classification = f"http {url or 'NOT SET'}"
            if not url:
                issues.append("CLASSIFICATION_SERVICE_URL not set: classification calls will fail")

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Work Time Consolidation Service: Startup Diagnostics        ║
╠══════════════════════════════════════════════════════════════╣
║  Python         : {py:<43s}║
║  Debug          : {str(app.debug):<43s}║
║  Database       : {f'{db_type} ({db_status})':<43s}║
║  Tables         : {table_count:<43s}║
║  Classification : {classification[:43]:<43s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
