"""Initial shift segmentation and timesheet schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

activity_tag = postgresql.ENUM(
    "NORMAL",
    "DRIVING",
    "PASSENGER",
    "EQUIPMENT",
    name="activity_tag",
    create_type=False,
)
approval_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    name="approval_status",
    create_type=False,
)
hour_bucket = postgresql.ENUM(
    "REGULAR",
    "NIGHT",
    "SATURDAY",
    "SUNDAY",
    "HOLIDAY",
    "DRIVING",
    "PASSENGER",
    "EQUIPMENT",
    "LEAVE",
    "MEDICAL_LEAVE",
    name="hour_bucket",
    create_type=False,
)
timesheet_state = postgresql.ENUM(
    "COMPUTED",
    "MANUAL_OVERRIDE",
    name="timesheet_state",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

HOUR_COLUMNS = (
    "hours_regular",
    "hours_night",
    "hours_saturday",
    "hours_sunday",
    "hours_holiday",
    "hours_driving",
    "hours_passenger",
    "hours_equipment",
    "hours_leave",
    "hours_medical_leave",
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (activity_tag, approval_status, hour_bucket, timesheet_state, audit_actor_type):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("name", name="uq_teams_name"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "team_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_start_date", sa.Date(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.UniqueConstraint(
            "team_id",
            "employee_id",
            "week_start_date",
            "day_of_week",
            name="uq_team_schedules_team_employee_day",
        ),
        sa.CheckConstraint("day_of_week BETWEEN 1 AND 7", name="ck_team_schedules_day_of_week"),
    )
    op.create_index("ix_team_schedules_team_id", "team_schedules", ["team_id"])
    op.create_index("ix_team_schedules_employee_id", "team_schedules", ["employee_id"])
    op.create_index("ix_team_schedules_week_start_date", "team_schedules", ["week_start_date"])

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("holiday_date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_holidays_holiday_date", "holidays", ["holiday_date"], unique=True)

    op.create_table(
        "shift_intervals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activity_tag", activity_tag, nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("approval_status", approval_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("needs_reprocessing", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_shift_intervals_employee_id", "shift_intervals", ["employee_id"])
    op.create_index("ix_shift_intervals_start_ts_utc", "shift_intervals", ["start_ts_utc"])
    op.create_index("ix_shift_intervals_needs_reprocessing", "shift_intervals", ["needs_reprocessing"])

    op.create_table(
        "shift_segments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "shift_id",
            sa.Integer(),
            sa.ForeignKey("shift_intervals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("start_ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("bucket", hour_bucket, nullable=False),
        sa.Column("hours", sa.Numeric(6, 2), nullable=False),
    )
    op.create_index("ix_shift_segments_shift_id", "shift_segments", ["shift_id"])
    op.create_index("ix_shift_segments_employee_id", "shift_segments", ["employee_id"])
    op.create_index("ix_shift_segments_work_date", "shift_segments", ["work_date"])

    op.create_table(
        "daily_timesheets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        *[
            sa.Column(column_name, sa.Numeric(6, 2), nullable=False, server_default=sa.text("0"))
            for column_name in HOUR_COLUMNS
        ],
        sa.Column("notes", sa.String(length=2000), nullable=True),
        sa.Column("state", timesheet_state, nullable=False, server_default=sa.text("'COMPUTED'")),
        sa.Column("override_by", sa.String(length=255), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_daily_timesheets_employee_day"),
    )
    op.create_index("ix_daily_timesheets_employee_id", "daily_timesheets", ["employee_id"])
    op.create_index("ix_daily_timesheets_work_date", "daily_timesheets", ["work_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_daily_timesheets_work_date", table_name="daily_timesheets")
    op.drop_index("ix_daily_timesheets_employee_id", table_name="daily_timesheets")
    op.drop_table("daily_timesheets")
    op.drop_index("ix_shift_segments_work_date", table_name="shift_segments")
    op.drop_index("ix_shift_segments_employee_id", table_name="shift_segments")
    op.drop_index("ix_shift_segments_shift_id", table_name="shift_segments")
    op.drop_table("shift_segments")
    op.drop_index("ix_shift_intervals_needs_reprocessing", table_name="shift_intervals")
    op.drop_index("ix_shift_intervals_start_ts_utc", table_name="shift_intervals")
    op.drop_index("ix_shift_intervals_employee_id", table_name="shift_intervals")
    op.drop_table("shift_intervals")
    op.drop_index("ix_holidays_holiday_date", table_name="holidays")
    op.drop_table("holidays")
    op.drop_index("ix_team_schedules_week_start_date", table_name="team_schedules")
    op.drop_index("ix_team_schedules_employee_id", table_name="team_schedules")
    op.drop_index("ix_team_schedules_team_id", table_name="team_schedules")
    op.drop_table("team_schedules")
    op.drop_table("employees")
    op.drop_table("teams")

    bind = op.get_bind()
    for enum_type in (audit_actor_type, timesheet_state, hour_bucket, approval_status, activity_tag):
        enum_type.drop(bind, checkfirst=True)
