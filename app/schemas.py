from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models import AttendanceStatus, LeaveStatus


class AttendanceClockRequest(BaseModel):
    employee_id: int
    notes: str | None = Field(default=None, max_length=2000)


class AttendanceBreakRequest(BaseModel):
    employee_id: int


class AttendanceNotesUpdateRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    work_date: date = Field(serialization_alias="date")
    check_in: datetime | None
    check_out: datetime | None
    break_start: datetime | None
    break_end: datetime | None
    total_hours: Decimal
    overtime_hours: Decimal
    status: AttendanceStatus | None
    notes: str | None
    updated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class AttendanceStatsRead(BaseModel):
    month: int
    year: int
    employee_id: int | None
    total_records: int
    total_present: int
    total_late: int
    total_half_day: int
    total_partial: int
    avg_hours: Decimal | None


class LeaveTypeCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=16)
    description: str | None = Field(default=None, max_length=1000)
    is_paid: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class LeaveTypeUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    code: str | None = Field(default=None, min_length=1, max_length=16)
    description: str | None = Field(default=None, max_length=1000)
    is_paid: bool | None = None
    is_active: bool | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str | None) -> str | None:
        return value.strip().upper() if value is not None else None


class LeaveTypeRead(BaseModel):
    id: int
    name: str
    code: str
    description: str | None
    is_paid: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class LeaveRequestCreateRequest(BaseModel):
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    days_requested: Decimal = Field(gt=0, max_digits=5, decimal_places=1)
    reason: str | None = Field(default=None, max_length=1000)


class LeaveRequestUpdateRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    days_requested: Decimal | None = Field(default=None, gt=0, max_digits=5, decimal_places=1)
    reason: str | None = Field(default=None, max_length=1000)


class LeaveRequestReviewRequest(BaseModel):
    status: Literal["approved", "rejected"]
    reviewer: str = Field(min_length=1, max_length=255)
    comment: str | None = Field(default=None, max_length=1000)


class LeaveRequestCancelRequest(BaseModel):
    cancelled_by: str = Field(min_length=1, max_length=255)
    cancellation_reason: str = Field(max_length=1000)


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    days_requested: Decimal
    reason: str | None
    status: LeaveStatus
    reviewed_by: str | None
    reviewed_at: datetime | None
    reviewer_comment: str | None
    cancelled_by: str | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class LeaveBalanceRead(BaseModel):
    id: int
    employee_id: int
    leave_type_id: int
    year: int
    accrued_balance: Decimal
    used_balance: Decimal
    current_balance: Decimal
    updated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
