"""
Operator event log (append-only).

Models:
    - OperatorEvent: one lifecycle event (START / PAUSE / RESUME / FINISH)
      emitted by an operator against a manufacturing launch.

The table is written by the operator terminals. This service only reads it,
apart from the narrow timestamp repair that rewrites ``created_at`` on a
single START / FINISH row whose captured time collapsed to midnight.

Timestamp sources, best first:
    created_at           full date-time capture (may be missing on legacy rows)
    event_date           date-only capture (always present)
    event_time           clock time stored next to event_date ("HH:MM[:SS]")
    explicit_*_time      clock time typed by the operator on START / FINISH
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

KIND_START = "START"
KIND_PAUSE = "PAUSE"
KIND_RESUME = "RESUME"
KIND_FINISH = "FINISH"

EVENT_KINDS = {KIND_START, KIND_PAUSE, KIND_RESUME, KIND_FINISH}

# Operator status markers that mean the work unit is over even when the
# FINISH row itself never made it into the log.
TERMINAL_STATUSES = {"FINISHED", "COMPLETED", "TERMINE"}


class OperatorEvent(db.Model):
    """A single operator lifecycle event against a launch.

    ``id`` is the insertion sequence: it breaks ties between events that share
    the same best-available timestamp.
    """

    __tablename__ = "operator_events"

    id = db.Column(db.Integer, primary_key=True)
    operator_code = db.Column(db.String(30), nullable=False)
    launch_code = db.Column(db.String(30), nullable=False)
    kind = db.Column(db.String(10), nullable=False, comment="START | PAUSE | RESUME | FINISH")
    phase = db.Column(db.String(30), nullable=True)
    sub_code = db.Column(db.String(30), nullable=True)
    status = db.Column(
        db.String(20),
        nullable=True,
        comment="Operator status marker written with the event, e.g. IN_PROGRESS | PAUSED | FINISHED",
    )
    event_date = db.Column(db.Date, nullable=False)
    event_time = db.Column(db.String(8), nullable=True, comment="HH:MM[:SS]")
    created_at = db.Column(db.DateTime(timezone=True), nullable=True)
    explicit_start_time = db.Column(db.String(8), nullable=True, comment="START only, HH:MM[:SS]")
    explicit_finish_time = db.Column(db.String(8), nullable=True, comment="FINISH only, HH:MM[:SS]")
    recorded_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "kind IN ('START','PAUSE','RESUME','FINISH')",
            name="ck_operator_event_kind",
        ),
        db.Index("ix_opevt_operator_launch", "operator_code", "launch_code"),
        db.Index("ix_opevt_launch_date", "launch_code", "event_date"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_code": self.operator_code,
            "launch_code": self.launch_code,
            "kind": self.kind,
            "phase": self.phase,
            "sub_code": self.sub_code,
            "status": self.status,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "event_time": self.event_time,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "explicit_start_time": self.explicit_start_time,
            "explicit_finish_time": self.explicit_finish_time,
        }

    def __repr__(self) -> str:
        return f"<OperatorEvent {self.id}: {self.operator_code}/{self.launch_code} {self.kind}>"
