"""
ERP launch classification mirror.

Models:
    - LaunchClassification: authoritative (phase, sub_code) pair for a launch,
      synchronised from the production-planning system.

Launches that are sub-components or already closed on the ERP side are not
consolidated; their rows carry ``is_component`` / ``is_closed`` instead of
being deleted so the skip reason stays visible.
"""

from datetime import datetime, timezone

from app.models import db


class LaunchClassification(db.Model):
    """(phase, sub_code) assigned by the ERP to one launch code."""

    __tablename__ = "launch_classifications"

    id = db.Column(db.Integer, primary_key=True)
    launch_code = db.Column(db.String(30), nullable=False, unique=True, index=True)
    phase = db.Column(db.String(30), nullable=False)
    sub_code = db.Column(db.String(30), nullable=False)
    is_component = db.Column(db.Boolean, nullable=False, default=False)
    is_closed = db.Column(db.Boolean, nullable=False, default=False)
    synced_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "launch_code": self.launch_code,
            "phase": self.phase,
            "sub_code": self.sub_code,
            "is_component": self.is_component,
            "is_closed": self.is_closed,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
        }

    def __repr__(self) -> str:
        return f"<LaunchClassification {self.launch_code}: {self.phase}/{self.sub_code}>"
