#!/usr/bin/env python3
"""Report work time records whose durations are inconsistent.

Checks every record (or one work date / status) for:
  - productive != total - pause (beyond the 1 min tolerance)
  - negative durations, missing required fields
  - with --deep: stored durations that differ from a recomputation from
    the operator events

Usage:
    python scripts/verify_durations.py
    python scripts/verify_durations.py --date 2026-10-19 --status PENDING --deep
"""

import argparse
import sys

sys.path.insert(0, ".")

from sqlalchemy import select

from app import create_app
from app.models import db
from app.models.work_time import PENDING_LABEL, WorkTimeRecord
from app.services.consolidation_service import verify_consolidation
from app.services.record_lifecycle import check_record
from app.utils.helpers import parse_date_input


def verify_durations(*, work_date=None, status: str | None = None, deep: bool = False) -> dict:
    """Walk the selected records and print one line per inconsistent record."""
    summary = {"checked": 0, "ok": 0, "inconsistent": 0, "drift": 0}

    stmt = select(WorkTimeRecord).order_by(WorkTimeRecord.work_date, WorkTimeRecord.id)
    if work_date is not None:
        stmt = stmt.where(WorkTimeRecord.work_date == work_date)
    if status:
        if status.upper() == PENDING_LABEL:
            stmt = stmt.where(WorkTimeRecord.processing_status.is_(None))
        else:
            stmt = stmt.where(WorkTimeRecord.processing_status == status.upper())

    for record in db.session.execute(stmt).scalars():
        summary["checked"] += 1
        prefix = f"record_id={record.id} {record.operator_code}/{record.launch_code} {record.work_date}"

        errors = check_record(record)
        if errors:
            summary["inconsistent"] += 1
            print(f"[MISMATCH] {prefix} " + "; ".join(errors))
            continue

        if deep:
            report = verify_consolidation(record.id)
            if report["warnings"] or report["errors"]:
                summary["drift"] += 1
                print(f"[DRIFT] {prefix} " + "; ".join(report["errors"] + report["warnings"]))
                continue

        summary["ok"] += 1

    print(
        "[SUMMARY] "
        f"checked={summary['checked']} "
        f"ok={summary['ok']} "
        f"inconsistent={summary['inconsistent']} "
        f"drift={summary['drift']}"
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Report inconsistent work time durations.")
    parser.add_argument("--date", help="Only records of this work date (YYYY-MM-DD)")
    parser.add_argument("--status", help="PENDING | VALIDATED | ON_HOLD | TRANSMITTED")
    parser.add_argument("--deep", action="store_true", help="Also recompute from operator events")
    args = parser.parse_args()

    try:
        work_date = parse_date_input(args.date)
    except ValueError as exc:
        parser.error(str(exc))

    app = create_app()
    with app.app_context():
        result = verify_durations(work_date=work_date, status=args.status, deep=args.deep)

    return 1 if result["inconsistent"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
