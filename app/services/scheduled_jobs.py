"""
Scheduled Jobs.

Concrete maintenance jobs for the work time records.

Jobs:
    - consolidation_sweep:  consolidate every finished cycle that has no
                            record yet (retry path for failed inline triggers)
    - transport_validation: validate every PENDING record for transport
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from sqlalchemy import select

from app.models import db
from app.models.work_time import WorkTimeRecord
from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)

# Finished cycles older than this are left to the maintenance scripts
SWEEP_LOOKBACK_DAYS = 7


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Consolidation Sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("consolidation_sweep")
def sweep_unconsolidated_cycles(app) -> dict[str, Any]:
    """Consolidate finished cycles of the last days that have no record."""
    from app.services.consolidation_service import consolidate_batch, find_unconsolidated_cycles

    lookback = int(app.config.get("SWEEP_LOOKBACK_DAYS", SWEEP_LOOKBACK_DAYS))
    cutoff = date.today() - timedelta(days=lookback)

    pending = [
        c for c in find_unconsolidated_cycles()
        if c["work_date"] and date.fromisoformat(c["work_date"]) >= cutoff
    ]
    if not pending:
        logger.info("Consolidation sweep: nothing to do", extra={"job_name": "consolidation_sweep"})
        return {"candidates": 0, "created": 0, "skipped": 0, "errors": 0}

    buckets = consolidate_batch(pending)
    results = {
        "candidates": len(pending),
        "created": len(buckets["created"]),
        "skipped": len(buckets["skipped"]),
        "errors": len(buckets["errors"]),
    }
    for item in buckets["errors"]:
        logger.warning(
            "Sweep could not consolidate cycle: %s", item.get("message"),
            extra={
                "operator_code": item.get("operator_code"),
                "launch_code": item.get("launch_code"),
                "reason": item.get("reason"),
            },
        )
    logger.info("Consolidation sweep: %s", results, extra={"job_name": "consolidation_sweep"})
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Transport Validation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("transport_validation")
def validate_pending_records(app) -> dict[str, Any]:
    """Validate every PENDING record so the export can pick it up."""
    from app.services.record_lifecycle import validate_and_transmit_batch

    ids = db.session.execute(
        select(WorkTimeRecord.id)
        .where(WorkTimeRecord.processing_status.is_(None))
        .order_by(WorkTimeRecord.id)
    ).scalars().all()

    buckets = validate_and_transmit_batch(list(ids))
    results = {
        "candidates": len(ids),
        "validated": len(buckets["validated"]),
        "skipped": len(buckets["skipped"]),
        "invalid": len(buckets["invalid"]),
    }
    logger.info("Transport validation: %s", results, extra={"job_name": "transport_validation"})
    return results
