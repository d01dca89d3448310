"""time_tracking_tables

Creates the work time consolidation tables:
  - operator_events        : append-only operator lifecycle events
  - work_time_records      : one consolidated record per work cycle
  - launch_classifications : ERP (phase, sub_code) mirror per launch

work_time_records carries both duplicate guards as unique constraints:
  uq_work_time_natural_key            (operator, launch, phase, sub_code, work_date)
  uq_work_time_operator_launch_start  (operator, launch, start_time)

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e5a2d9b40
Revises:
Create Date: 2026-10-19 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e5a2d9b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── OperatorEvent ─────────────────────────────────────────────────────
    if "operator_events" not in existing:
        op.create_table(
            "operator_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("operator_code", sa.String(length=30), nullable=False),
            sa.Column("launch_code", sa.String(length=30), nullable=False),
            sa.Column(
                "kind", sa.String(length=10), nullable=False,
                comment="START | PAUSE | RESUME | FINISH",
            ),
            sa.Column("phase", sa.String(length=30), nullable=True),
            sa.Column("sub_code", sa.String(length=30), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=True,
                comment="Operator status marker written with the event, e.g. IN_PROGRESS | PAUSED | FINISHED",
            ),
            sa.Column("event_date", sa.Date(), nullable=False),
            sa.Column("event_time", sa.String(length=8), nullable=True, comment="HH:MM[:SS]"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "explicit_start_time", sa.String(length=8), nullable=True,
                comment="START only, HH:MM[:SS]",
            ),
            sa.Column(
                "explicit_finish_time", sa.String(length=8), nullable=True,
                comment="FINISH only, HH:MM[:SS]",
            ),
            sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "kind IN ('START','PAUSE','RESUME','FINISH')",
                name="ck_operator_event_kind",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_opevt_operator_launch", "operator_events", ["operator_code", "launch_code"])
        op.create_index("ix_opevt_launch_date", "operator_events", ["launch_code", "event_date"])

    # ── WorkTimeRecord ────────────────────────────────────────────────────
    if "work_time_records" not in existing:
        op.create_table(
            "work_time_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("operator_code", sa.String(length=30), nullable=False),
            sa.Column("launch_code", sa.String(length=30), nullable=False),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("sub_code", sa.String(length=30), nullable=False),
            sa.Column("work_date", sa.Date(), nullable=False),
            sa.Column("start_time", sa.DateTime(), nullable=False),
            sa.Column("end_time", sa.DateTime(), nullable=False),
            sa.Column("total_duration_min", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pause_duration_min", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("productive_duration_min", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("events_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column(
                "processing_status", sa.String(length=12), nullable=True,
                comment="NULL (pending) | VALIDATED | ON_HOLD | TRANSMITTED",
            ),
            sa.Column(
                "calculation_method", sa.String(length=20), nullable=True,
                comment="clock_times | timestamps",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "processing_status IS NULL OR processing_status IN ('VALIDATED','ON_HOLD','TRANSMITTED')",
                name="ck_work_time_processing_status",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "operator_code", "launch_code", "phase", "sub_code", "work_date",
                name="uq_work_time_natural_key",
            ),
            sa.UniqueConstraint(
                "operator_code", "launch_code", "start_time",
                name="uq_work_time_operator_launch_start",
            ),
        )
        op.create_index("ix_work_time_records_operator_code", "work_time_records", ["operator_code"])
        op.create_index("ix_work_time_records_launch_code", "work_time_records", ["launch_code"])
        op.create_index("ix_work_time_records_work_date", "work_time_records", ["work_date"])
        op.create_index("ix_work_time_records_processing_status", "work_time_records", ["processing_status"])

    # ── LaunchClassification ──────────────────────────────────────────────
    if "launch_classifications" not in existing:
        op.create_table(
            "launch_classifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("launch_code", sa.String(length=30), nullable=False),
            sa.Column("phase", sa.String(length=30), nullable=False),
            sa.Column("sub_code", sa.String(length=30), nullable=False),
            sa.Column("is_component", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_launch_classifications_launch_code", "launch_classifications", ["launch_code"],
            unique=True,
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    if "launch_classifications" in existing:
        op.drop_index("ix_launch_classifications_launch_code", table_name="launch_classifications")
        op.drop_table("launch_classifications")

    if "work_time_records" in existing:
        op.drop_index("ix_work_time_records_processing_status", table_name="work_time_records")
        op.drop_index("ix_work_time_records_work_date", table_name="work_time_records")
        op.drop_index("ix_work_time_records_launch_code", table_name="work_time_records")
        op.drop_index("ix_work_time_records_operator_code", table_name="work_time_records")
        op.drop_table("work_time_records")

    if "operator_events" in existing:
        op.drop_index("ix_opevt_launch_date", table_name="operator_events")
        op.drop_index("ix_opevt_operator_launch", table_name="operator_events")
        op.drop_table("operator_events")
