from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pontaj.db import Base

ZERO_HOURS = Decimal("0.00")


class HourBucket(str, enum.Enum):
    REGULAR = "REGULAR"
    NIGHT = "NIGHT"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"
    HOLIDAY = "HOLIDAY"
    DRIVING = "DRIVING"
    PASSENGER = "PASSENGER"
    EQUIPMENT = "EQUIPMENT"
    LEAVE = "LEAVE"
    MEDICAL_LEAVE = "MEDICAL_LEAVE"


class ActivityTag(str, enum.Enum):
    NORMAL = "NORMAL"
    DRIVING = "DRIVING"
    PASSENGER = "PASSENGER"
    EQUIPMENT = "EQUIPMENT"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TimesheetState(str, enum.Enum):
    COMPUTED = "COMPUTED"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"


class LeaveKind(str, enum.Enum):
    VACATION = "VACATION"
    MEDICAL = "MEDICAL"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


# Column on daily_timesheets holding each bucket's hours.
BUCKET_COLUMNS: dict[HourBucket, str] = {
    HourBucket.REGULAR: "hours_regular",
    HourBucket.NIGHT: "hours_night",
    HourBucket.SATURDAY: "hours_saturday",
    HourBucket.SUNDAY: "hours_sunday",
    HourBucket.HOLIDAY: "hours_holiday",
    HourBucket.DRIVING: "hours_driving",
    HourBucket.PASSENGER: "hours_passenger",
    HourBucket.EQUIPMENT: "hours_equipment",
    HourBucket.LEAVE: "hours_leave",
    HourBucket.MEDICAL_LEAVE: "hours_medical_leave",
}

SHIFT_BUCKETS: tuple[HourBucket, ...] = (
    HourBucket.REGULAR,
    HourBucket.NIGHT,
    HourBucket.SATURDAY,
    HourBucket.SUNDAY,
    HourBucket.HOLIDAY,
    HourBucket.DRIVING,
    HourBucket.PASSENGER,
    HourBucket.EQUIPMENT,
)

LEAVE_BUCKETS: tuple[HourBucket, ...] = (HourBucket.LEAVE, HourBucket.MEDICAL_LEAVE)

_JSON_DOCUMENT = JSON().with_variant(JSONB(), "postgresql")


def _hours_column() -> Any:
    return mapped_column(
        Numeric(6, 2),
        nullable=False,
        default=ZERO_HOURS,
        server_default=text("0"),
    )


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    schedules: Mapped[list[TeamSchedule]] = relationship(back_populates="team")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    shifts: Mapped[list[ShiftInterval]] = relationship(back_populates="employee")
    daily_timesheets: Mapped[list[DailyTimesheet]] = relationship(back_populates="employee")
    schedules: Mapped[list[TeamSchedule]] = relationship(back_populates="employee")


class TeamSchedule(Base):
    __tablename__ = "team_schedules"
    __table_args__ = (
        UniqueConstraint(
            "team_id",
            "employee_id",
            "week_start_date",
            "day_of_week",
            name="uq_team_schedules_team_employee_day",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # ISO weekday: 1=Monday ... 7=Sunday
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)

    team: Mapped[Team] = relationship(back_populates="schedules")
    employee: Mapped[Employee] = relationship(back_populates="schedules")


class Holiday(Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class ShiftInterval(Base):
    __tablename__ = "shift_intervals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activity_tag: Mapped[ActivityTag | None] = mapped_column(
        Enum(ActivityTag, name="activity_tag"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    needs_reprocessing: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        index=True,
    )
    last_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="shifts")
    segments: Mapped[list[ShiftSegment]] = relationship(
        back_populates="shift",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ShiftSegment(Base):
    __tablename__ = "shift_segments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shift_id: Mapped[int] = mapped_column(
        ForeignKey("shift_intervals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    bucket: Mapped[HourBucket] = mapped_column(Enum(HourBucket, name="hour_bucket"), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)

    shift: Mapped[ShiftInterval] = relationship(back_populates="segments")


class DailyTimesheet(Base):
    __tablename__ = "daily_timesheets"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_daily_timesheets_employee_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hours_regular: Mapped[Decimal] = _hours_column()
    hours_night: Mapped[Decimal] = _hours_column()
    hours_saturday: Mapped[Decimal] = _hours_column()
    hours_sunday: Mapped[Decimal] = _hours_column()
    hours_holiday: Mapped[Decimal] = _hours_column()
    hours_driving: Mapped[Decimal] = _hours_column()
    hours_passenger: Mapped[Decimal] = _hours_column()
    hours_equipment: Mapped[Decimal] = _hours_column()
    hours_leave: Mapped[Decimal] = _hours_column()
    hours_medical_leave: Mapped[Decimal] = _hours_column()
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    state: Mapped[TimesheetState] = mapped_column(
        Enum(TimesheetState, name="timesheet_state"),
        nullable=False,
        default=TimesheetState.COMPUTED,
        server_default=text("'COMPUTED'"),
    )
    override_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="daily_timesheets")

    def bucket_hours(self) -> dict[HourBucket, Decimal]:
        return {
            bucket: Decimal(getattr(self, column) if getattr(self, column) is not None else ZERO_HOURS)
            for bucket, column in BUCKET_COLUMNS.items()
        }

    @property
    def total_hours(self) -> Decimal:
        return sum(self.bucket_hours().values(), ZERO_HOURS)

    @property
    def worked_hours(self) -> Decimal:
        hours = self.bucket_hours()
        return sum((hours[bucket] for bucket in SHIFT_BUCKETS), ZERO_HOURS)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        _JSON_DOCUMENT,
        nullable=False,
        default=dict,
    )
