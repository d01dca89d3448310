#!/usr/bin/env python3
"""Fix inconsistent durations on non-transmitted work time records (idempotent).

Default fix: clamp negative total / pause to 0 and recompute productive as
max(0, total - pause). With --from-events the durations are recomputed from
the operator events instead. TRANSMITTED records are never touched.

Usage:
    python scripts/fix_durations.py --dry-run
    python scripts/fix_durations.py --apply [--from-events] [--date 2026-10-19]
"""

import argparse
import sys

sys.path.insert(0, ".")

from sqlalchemy import select

from app import create_app
from app.core.exceptions import ValidationError
from app.models import db
from app.models.work_time import STATUS_TRANSMITTED, WorkTimeRecord
from app.services.consolidation_service import recalculate_durations
from app.services.record_lifecycle import autofix_record, check_record
from app.utils.helpers import parse_date_input


def fix_durations(*, apply: bool = False, from_events: bool = False, work_date=None) -> dict:
    """Fix every inconsistent non-transmitted record, safe for reruns."""
    summary = {
        "mode": "apply" if apply else "dry-run",
        "checked": 0,
        "fixed": 0,
        "would_fix": 0,
        "errors": 0,
    }

    stmt = (
        select(WorkTimeRecord)
        .where(
            (WorkTimeRecord.processing_status.is_(None))
            | (WorkTimeRecord.processing_status != STATUS_TRANSMITTED)
        )
        .order_by(WorkTimeRecord.id)
    )
    if work_date is not None:
        stmt = stmt.where(WorkTimeRecord.work_date == work_date)
    records = db.session.execute(stmt).scalars().all()

    print(f"[INFO] mode={summary['mode']} records={len(records)}")

    for record in records:
        summary["checked"] += 1
        prefix = f"record_id={record.id} {record.operator_code}/{record.launch_code}"

        if not from_events and not check_record(record):
            continue

        if not apply:
            summary["would_fix"] += 1
            reason = "recalculate" if from_events else "; ".join(check_record(record))
            print(f"[PLAN] {prefix} {reason}")
            continue

        try:
            if from_events:
                changes = recalculate_durations(record.id)["changes"]
                if not changes:
                    continue
                print(f"[FIX] {prefix} " + ", ".join(sorted(changes)))
            else:
                fixes = autofix_record(record)
                db.session.commit()
                print(f"[FIX] {prefix} " + "; ".join(fixes))
            summary["fixed"] += 1
        except ValidationError as exc:
            db.session.rollback()
            summary["errors"] += 1
            print(f"[ERROR] {prefix} error={exc}")

    print(
        "[SUMMARY] "
        f"mode={summary['mode']} "
        f"checked={summary['checked']} "
        f"fixed={summary['fixed']} "
        f"would_fix={summary['would_fix']} "
        f"errors={summary['errors']}"
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Fix inconsistent durations on non-transmitted work time records."
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Preview only; do not write data")
    mode.add_argument("--apply", action="store_true", help="Persist fixes")
    parser.add_argument("--from-events", action="store_true", help="Recompute from operator events")
    parser.add_argument("--date", help="Only records of this work date (YYYY-MM-DD)")
    args = parser.parse_args()

    if not args.dry_run and not args.apply:
        print("[INFO] No mode specified; defaulting to --dry-run")
    try:
        work_date = parse_date_input(args.date)
    except ValueError as exc:
        parser.error(str(exc))

    app = create_app()
    with app.app_context():
        result = fix_durations(apply=bool(args.apply), from_events=args.from_events, work_date=work_date)

    return 1 if result["errors"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
