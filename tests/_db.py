from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pontaj.db import Base
from pontaj.models import ActivityTag, ApprovalStatus, Employee, ShiftInterval, Team, TeamSchedule


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def add_employee(db: Session, employee_id: int = 1, full_name: str = "Ion Popescu") -> Employee:
    employee = Employee(id=employee_id, full_name=full_name, is_active=True)
    db.add(employee)
    db.commit()
    return employee


def add_shift(
    db: Session,
    *,
    employee_id: int = 1,
    start: datetime,
    end: datetime | None,
    activity_tag: ActivityTag | None = None,
    notes: str | None = None,
    approval_status: ApprovalStatus = ApprovalStatus.PENDING,
) -> ShiftInterval:
    shift = ShiftInterval(
        employee_id=employee_id,
        start_ts_utc=start,
        end_ts_utc=end,
        activity_tag=activity_tag,
        notes=notes,
        approval_status=approval_status,
    )
    db.add(shift)
    db.commit()
    return shift


def schedule(db: Session, *, team_id: int, employee_id: int, work_date: date) -> None:
    if db.get(Team, team_id) is None:
        db.add(Team(id=team_id, name=f"Echipa {team_id}"))
    week_start = date.fromordinal(work_date.toordinal() - work_date.weekday())
    db.add(
        TeamSchedule(
            team_id=team_id,
            employee_id=employee_id,
            week_start_date=week_start,
            day_of_week=work_date.isoweekday(),
        )
    )
    db.commit()
