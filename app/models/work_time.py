"""
Consolidated work time records.

Models:
    - WorkTimeRecord: one row per completed operator work cycle, ready to be
      validated and exported to the production-planning system.

Keys:
    Natural key    (operator_code, launch_code, phase, sub_code, work_date)
    Alternate key  (operator_code, launch_code, start_time)

Both are enforced as unique constraints. A violation of either one at insert
time means a concurrent caller already consolidated the cycle.

Processing status lifecycle:

    PENDING (NULL) ──▶ VALIDATED ──▶ TRANSMITTED
          ▲   │            │
          │   ▼            ▼
          └─ ON_HOLD ◀─────┘

TRANSMITTED is terminal for business edits.
"""

from datetime import datetime, time, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

STATUS_PENDING = None
STATUS_VALIDATED = "VALIDATED"
STATUS_ON_HOLD = "ON_HOLD"
STATUS_TRANSMITTED = "TRANSMITTED"

PROCESSING_STATUSES = {STATUS_VALIDATED, STATUS_ON_HOLD, STATUS_TRANSMITTED}

# Accepted on query strings and API payloads to address the NULL status.
PENDING_LABEL = "PENDING"

# action -> allowed source statuses and target status
STATUS_TRANSITIONS = {
    "validate": {"from": [STATUS_PENDING, STATUS_VALIDATED], "to": STATUS_VALIDATED},
    "hold": {"from": [STATUS_PENDING, STATUS_VALIDATED], "to": STATUS_ON_HOLD},
    "release": {"from": [STATUS_ON_HOLD], "to": STATUS_PENDING},
    "transmit": {"from": [STATUS_VALIDATED], "to": STATUS_TRANSMITTED},
}

CALCULATION_METHODS = {"clock_times", "timestamps"}

# Allowed gap between productive and total - pause after manual edits.
DURATION_TOLERANCE_MIN = 1


def status_label(status: str | None) -> str:
    """Return the display label for a processing status (NULL -> PENDING)."""
    return status or PENDING_LABEL


class WorkTimeRecord(db.Model):
    """
    Consolidated durations of one operator work cycle on a launch.

    Durations are whole minutes. ``productive_duration_min`` is always
    derived server-side as ``max(0, total - pause)``.
    """

    __tablename__ = "work_time_records"

    id = db.Column(db.Integer, primary_key=True)
    operator_code = db.Column(db.String(30), nullable=False, index=True)
    launch_code = db.Column(db.String(30), nullable=False, index=True)
    phase = db.Column(db.String(30), nullable=False)
    sub_code = db.Column(db.String(30), nullable=False)
    work_date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    total_duration_min = db.Column(db.Integer, nullable=False, default=0)
    pause_duration_min = db.Column(db.Integer, nullable=False, default=0)
    productive_duration_min = db.Column(db.Integer, nullable=False, default=0)
    events_count = db.Column(db.Integer, nullable=False, default=0)
    processing_status = db.Column(
        db.String(12),
        nullable=True,
        index=True,
        comment="NULL (pending) | VALIDATED | ON_HOLD | TRANSMITTED",
    )
    calculation_method = db.Column(
        db.String(20),
        nullable=True,
        comment="clock_times | timestamps",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint(
            "operator_code", "launch_code", "phase", "sub_code", "work_date",
            name="uq_work_time_natural_key",
        ),
        db.UniqueConstraint(
            "operator_code", "launch_code", "start_time",
            name="uq_work_time_operator_launch_start",
        ),
        db.CheckConstraint(
            "processing_status IS NULL OR processing_status IN ('VALIDATED','ON_HOLD','TRANSMITTED')",
            name="ck_work_time_processing_status",
        ),
    )

    @property
    def is_transmitted(self) -> bool:
        return self.processing_status == STATUS_TRANSMITTED

    @property
    def has_midnight_times(self) -> bool:
        """True when start or end collapsed to 00:00:00 (date-only source column)."""
        return any(
            value is not None and value.time() == time(0, 0)
            for value in (self.start_time, self.end_time)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_code": self.operator_code,
            "launch_code": self.launch_code,
            "phase": self.phase,
            "sub_code": self.sub_code,
            "work_date": self.work_date.isoformat() if self.work_date else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_duration_min": self.total_duration_min,
            "pause_duration_min": self.pause_duration_min,
            "productive_duration_min": self.productive_duration_min,
            "events_count": self.events_count,
            "processing_status": status_label(self.processing_status),
            "calculation_method": self.calculation_method,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<WorkTimeRecord {self.id}: {self.operator_code}/{self.launch_code} "
            f"{self.work_date} [{status_label(self.processing_status)}]>"
        )
