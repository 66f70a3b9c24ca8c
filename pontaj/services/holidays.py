from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pontaj.errors import ApiError
from pontaj.models import Holiday

logger = logging.getLogger("pontaj.holidays")


class HolidaySet:
    """Immutable lookup of legal-holiday dates."""

    __slots__ = ("_dates",)

    def __init__(self, dates: Iterable[date] = ()) -> None:
        self._dates = frozenset(dates)

    @classmethod
    def from_values(cls, values: Iterable[date | str]) -> HolidaySet:
        dates: list[date] = []
        for value in values:
            if isinstance(value, str):
                dates.append(date.fromisoformat(value.strip()[:10]))
            else:
                dates.append(value)
        return cls(dates)

    def __contains__(self, value: object) -> bool:
        return value in self._dates

    def __iter__(self) -> Iterator[date]:
        return iter(sorted(self._dates))

    def __len__(self) -> int:
        return len(self._dates)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HolidaySet):
            return NotImplemented
        return self._dates == other._dates

    def __hash__(self) -> int:
        return hash(self._dates)

    def __repr__(self) -> str:
        return f"HolidaySet({[item.isoformat() for item in self]})"


EMPTY_HOLIDAYS = HolidaySet()


def load_holiday_set(db: Session) -> HolidaySet:
    return HolidaySet(db.scalars(select(Holiday.holiday_date)).all())


def create_holiday(db: Session, *, holiday_date: date, name: str | None) -> Holiday:
    holiday = Holiday(holiday_date=holiday_date, name=name)
    db.add(holiday)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="HOLIDAY_EXISTS",
            message=f"{holiday_date.isoformat()} is already a legal holiday.",
        ) from exc
    db.refresh(holiday)
    logger.info("holiday_created", extra={"holiday_date": holiday_date, "holiday_name": name})
    return holiday


def list_holidays(db: Session, *, year: int | None = None) -> list[Holiday]:
    stmt = select(Holiday).order_by(Holiday.holiday_date.asc())
    if year is not None:
        stmt = stmt.where(
            Holiday.holiday_date >= date(year, 1, 1),
            Holiday.holiday_date <= date(year, 12, 31),
        )
    return list(db.scalars(stmt).all())


def delete_holiday(db: Session, holiday_id: int) -> date:
    holiday = db.get(Holiday, holiday_id)
    if holiday is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Holiday not found")
    holiday_date = holiday.holiday_date
    db.delete(holiday)
    db.commit()
    logger.info("holiday_deleted", extra={"holiday_date": holiday_date})
    return holiday_date
