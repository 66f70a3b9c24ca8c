from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pontaj.models import ActivityTag, ApprovalStatus, HourBucket, LeaveKind, TimesheetState


class ShiftCreateRequest(BaseModel):
    employee_id: int = Field(ge=1)
    start: datetime
    end: datetime | None = None
    activity_tag: ActivityTag | None = None
    notes: str | None = Field(default=None, max_length=1000)


class ShiftCloseRequest(BaseModel):
    end: datetime


class ShiftCorrectionRequest(BaseModel):
    start: datetime | None = None
    end: datetime | None = None
    activity_tag: ActivityTag | None = None
    notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _require_change(self) -> "ShiftCorrectionRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided.")
        if "start" in self.model_fields_set and self.start is None:
            raise ValueError("start cannot be cleared.")
        return self


class ShiftRead(BaseModel):
    id: int
    employee_id: int
    start_ts_utc: datetime
    end_ts_utc: datetime | None
    activity_tag: ActivityTag | None
    notes: str | None
    approval_status: ApprovalStatus
    approved_by: str | None = None
    needs_reprocessing: bool
    last_processed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ShiftSegmentRead(BaseModel):
    id: int
    work_date: date
    start_ts_utc: datetime
    end_ts_utc: datetime
    bucket: HourBucket
    hours: Decimal

    model_config = ConfigDict(from_attributes=True)


class ValidationIssueRead(BaseModel):
    code: str
    message: str
    bucket: str | None = None


class AggregationOutcomeRead(BaseModel):
    employee_id: int
    shift_id: int | None = None
    segment_count: int = 0
    persisted_dates: list[date] = Field(default_factory=list)
    rejected: dict[date, list[ValidationIssueRead]] = Field(default_factory=dict)
    conflict_dates: list[date] = Field(default_factory=list)
    failed_dates: list[date] = Field(default_factory=list)


class ShiftMutationResponse(BaseModel):
    shift: ShiftRead
    aggregation: AggregationOutcomeRead | None = None


class ShiftApproveRequest(BaseModel):
    shift_ids: list[int] = Field(min_length=1, max_length=500)


class ShiftApproveResponse(BaseModel):
    approved: list[int]
    not_found: list[int]
    errors: dict[int, str]
    aggregations: list[AggregationOutcomeRead]


class DedupeRequest(BaseModel):
    team_id: int = Field(ge=1)
    work_date: date


class DedupeShiftRead(BaseModel):
    id: int
    employee_id: int
    start_ts_utc: datetime
    end_ts_utc: datetime | None
    activity_tag: ActivityTag | None

    model_config = ConfigDict(from_attributes=True)


class DedupeResponse(BaseModel):
    team_id: int
    work_date: date
    removed_count: int
    removed: list[DedupeShiftRead]
    kept: list[DedupeShiftRead]


class ReconciliationResultRead(BaseModel):
    work_date: date
    entries_total: Decimal
    aggregate_total: Decimal | None
    delta: Decimal
    discrepancy: bool
    incomplete: bool
    missing_aggregate: bool
    shift_count: int
    flags: list[str]

    model_config = ConfigDict(from_attributes=True)


class ReconciliationSummaryRead(BaseModel):
    days: int
    discrepancy_days: int
    incomplete_days: int
    missing_aggregate_days: int
    entries_total: Decimal
    aggregate_total: Decimal
    delta_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class TeamDiscrepancyRead(BaseModel):
    employee_id: int
    full_name: str
    result: ReconciliationResultRead

    model_config = ConfigDict(from_attributes=True)


class TeamAuditResponse(BaseModel):
    start_date: date
    end_date: date
    threshold_hours: Decimal
    finding_count: int
    findings: list[TeamDiscrepancyRead]


class TimesheetAuditResponse(BaseModel):
    employee_id: int
    start_date: date
    end_date: date
    threshold_hours: Decimal
    results: list[ReconciliationResultRead]
    summary: ReconciliationSummaryRead


class ReprocessRequest(BaseModel):
    mode: Literal["missing_segments", "needs_reprocessing", "date_range"] = "missing_segments"
    start_date: date | None = None
    end_date: date | None = None
    batch_size: int | None = Field(default=None, ge=1, le=1000)

    @model_validator(mode="after")
    def _validate_range(self) -> "ReprocessRequest":
        if self.mode == "date_range" and (self.start_date is None or self.end_date is None):
            raise ValueError("start_date and end_date are required for date_range mode.")
        return self


class ReprocessResponse(BaseModel):
    mode: str
    batches: int
    scanned: int
    processed: list[int]
    failed: dict[int, str]
    days_with_issues: dict[int, list[str]]

    model_config = ConfigDict(from_attributes=True)


class TimesheetOverrideRequest(BaseModel):
    hours_regular: Decimal = Decimal("0")
    hours_night: Decimal = Decimal("0")
    hours_saturday: Decimal = Decimal("0")
    hours_sunday: Decimal = Decimal("0")
    hours_holiday: Decimal = Decimal("0")
    hours_driving: Decimal = Decimal("0")
    hours_passenger: Decimal = Decimal("0")
    hours_equipment: Decimal = Decimal("0")
    hours_leave: Decimal = Decimal("0")
    hours_medical_leave: Decimal = Decimal("0")
    note: str | None = Field(default=None, max_length=2000)

    def bucket_hours(self) -> dict[HourBucket, Decimal]:
        return {
            HourBucket.REGULAR: self.hours_regular,
            HourBucket.NIGHT: self.hours_night,
            HourBucket.SATURDAY: self.hours_saturday,
            HourBucket.SUNDAY: self.hours_sunday,
            HourBucket.HOLIDAY: self.hours_holiday,
            HourBucket.DRIVING: self.hours_driving,
            HourBucket.PASSENGER: self.hours_passenger,
            HourBucket.EQUIPMENT: self.hours_equipment,
            HourBucket.LEAVE: self.hours_leave,
            HourBucket.MEDICAL_LEAVE: self.hours_medical_leave,
        }


class DailyTimesheetRead(BaseModel):
    employee_id: int
    work_date: date
    hours_regular: Decimal
    hours_night: Decimal
    hours_saturday: Decimal
    hours_sunday: Decimal
    hours_holiday: Decimal
    hours_driving: Decimal
    hours_passenger: Decimal
    hours_equipment: Decimal
    hours_leave: Decimal
    hours_medical_leave: Decimal
    notes: str | None
    state: TimesheetState
    override_by: str | None

    model_config = ConfigDict(from_attributes=True)


class LeaveApplyRequest(BaseModel):
    employee_id: int = Field(ge=1)
    start_date: date
    end_date: date
    kind: LeaveKind
    hours: Decimal | None = Field(default=None, ge=0, le=24)


class LeaveWithdrawRequest(BaseModel):
    employee_id: int = Field(ge=1)
    start_date: date
    end_date: date
    kind: LeaveKind


class LeaveOutcomeRead(BaseModel):
    employee_id: int
    kind: LeaveKind
    processed_dates: list[date]
    skipped_dates: list[date]
    failed_dates: list[date]
    rejected: dict[date, list[ValidationIssueRead]]
    conflict_dates: list[date]


class HolidayCreate(BaseModel):
    holiday_date: date
    name: str | None = Field(default=None, max_length=255)


class HolidayRead(BaseModel):
    id: int
    holiday_date: date
    name: str | None

    model_config = ConfigDict(from_attributes=True)
