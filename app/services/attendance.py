from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import AttendanceRecord, AttendanceStatus, Employee
from app.services.attendance_hours import apply_attendance_hours
from app.settings import get_settings

logger = logging.getLogger("app.attendance")


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo("UTC")


@lru_cache
def _late_checkin_after() -> time:
    hour_str, minute_str = get_settings().late_checkin_after.split(":")
    return time(hour=int(hour_str), minute=int(minute_str))


def _normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def _local_day(ts_utc: datetime) -> date:
    return ts_utc.astimezone(_attendance_timezone()).date()


def _clock_in_status(ts_utc: datetime) -> AttendanceStatus:
    local_time = ts_utc.astimezone(_attendance_timezone()).time()
    if local_time > _late_checkin_after():
        return AttendanceStatus.LATE
    return AttendanceStatus.PRESENT


def _ensure_active_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    if not employee.is_active:
        raise ApiError(status_code=403, code="EMPLOYEE_INACTIVE", message="Employee is not active.")
    return employee


def _resolve_day_record(db: Session, employee_id: int, day: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == day,
        )
    )


def _resolve_open_record(db: Session, employee_id: int, day: date) -> AttendanceRecord:
    record = _resolve_day_record(db, employee_id, day)
    if record is None:
        # A session opened yesterday and still running crossed midnight.
        previous = _resolve_day_record(db, employee_id, day - timedelta(days=1))
        if previous is not None and previous.check_in is not None and previous.check_out is None:
            record = previous
    if record is None or record.check_in is None:
        raise ApiError(status_code=409, code="NOT_CHECKED_IN", message="Must clock in before this action.")
    if record.check_out is not None:
        raise ApiError(status_code=409, code="ALREADY_CHECKED_OUT", message="Already clocked out for today.")
    return record


def save_attendance_record(db: Session, record: AttendanceRecord, *, now: datetime | None = None) -> AttendanceRecord:
    """Single write path for attendance rows: derive hours, flush, commit."""
    try:
        apply_attendance_hours(record, now=now)
        db.add(record)
        db.flush()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


def clock_in(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    notes: str | None = None,
) -> AttendanceRecord:
    _ensure_active_employee(db, employee_id)
    ts_utc = _normalize_ts(now)
    day = _local_day(ts_utc)

    record = _resolve_day_record(db, employee_id, day)
    if record is not None and record.check_in is not None:
        raise ApiError(status_code=409, code="ALREADY_CHECKED_IN", message="Already clocked in for today.")
    if record is None:
        record = AttendanceRecord(employee_id=employee_id, work_date=day)

    record.check_in = ts_utc
    record.status = _clock_in_status(ts_utc)
    if notes is not None:
        record.notes = notes

    saved = save_attendance_record(db, record, now=ts_utc)
    logger.info(
        "attendance_clock_in",
        extra={"employee_id": employee_id, "attendance_id": saved.id, "status": saved.status},
    )
    return saved


def start_break(db: Session, *, employee_id: int, now: datetime | None = None) -> AttendanceRecord:
    ts_utc = _normalize_ts(now)
    record = _resolve_open_record(db, employee_id, _local_day(ts_utc))
    if record.break_start is not None:
        raise ApiError(status_code=409, code="BREAK_ALREADY_STARTED", message="Break already started.")

    record.break_start = ts_utc
    return save_attendance_record(db, record, now=ts_utc)


def end_break(db: Session, *, employee_id: int, now: datetime | None = None) -> AttendanceRecord:
    ts_utc = _normalize_ts(now)
    record = _resolve_open_record(db, employee_id, _local_day(ts_utc))
    if record.break_start is None:
        raise ApiError(status_code=409, code="BREAK_NOT_STARTED", message="No break in progress.")
    if record.break_end is not None:
        raise ApiError(status_code=409, code="BREAK_ALREADY_ENDED", message="Break already ended.")

    record.break_end = ts_utc
    return save_attendance_record(db, record, now=ts_utc)


def clock_out(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    notes: str | None = None,
) -> AttendanceRecord:
    ts_utc = _normalize_ts(now)
    record = _resolve_open_record(db, employee_id, _local_day(ts_utc))

    record.check_out = ts_utc
    if record.break_start is not None and record.break_end is None:
        record.break_end = ts_utc
    if notes is not None:
        record.notes = notes

    saved = save_attendance_record(db, record, now=ts_utc)
    logger.info(
        "attendance_clock_out",
        extra={
            "employee_id": employee_id,
            "attendance_id": saved.id,
            "total_hours": saved.total_hours,
            "overtime_hours": saved.overtime_hours,
            "status": saved.status,
        },
    )
    return saved


def update_attendance_notes(db: Session, *, record_id: int, notes: str | None) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")

    record.notes = notes
    return save_attendance_record(db, record)


def get_today_record(db: Session, *, employee_id: int, now: datetime | None = None) -> AttendanceRecord | None:
    return _resolve_day_record(db, employee_id, _local_day(_normalize_ts(now)))


def list_attendance_records(
    db: Session,
    *,
    employee_id: int | None,
    date_from: date | None,
    date_to: date | None,
) -> list[AttendanceRecord]:
    if date_from is not None and date_to is not None and date_to < date_from:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="date_to must be greater than or equal to date_from",
        )

    stmt = select(AttendanceRecord).order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.id.desc())
    if employee_id is not None:
        stmt = stmt.where(AttendanceRecord.employee_id == employee_id)
    if date_from is not None:
        stmt = stmt.where(AttendanceRecord.work_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(AttendanceRecord.work_date <= date_to)

    return list(db.scalars(stmt).all())


def attendance_stats(
    db: Session,
    *,
    month: int | None = None,
    year: int | None = None,
    employee_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Monthly counts by stored status plus the average of closed sessions' hours.

    ``late`` is a clock-in status; clock-out replaces it with the hours-based
    status, so late counts only sessions still open.
    """
    today = _local_day(_normalize_ts(now))
    month = month or today.month
    year = year or today.year
    if not 1 <= month <= 12:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="month must be 1-12")

    filters = [
        AttendanceRecord.work_date >= date(year, month, 1),
        AttendanceRecord.work_date <= date(year, month, calendar.monthrange(year, month)[1]),
    ]
    if employee_id is not None:
        filters.append(AttendanceRecord.employee_id == employee_id)

    counts = {
        record_status: count
        for record_status, count in db.execute(
            select(AttendanceRecord.status, func.count(AttendanceRecord.id))
            .where(*filters)
            .group_by(AttendanceRecord.status)
        ).all()
    }
    avg_hours = db.scalar(
        select(func.avg(AttendanceRecord.total_hours)).where(*filters, AttendanceRecord.check_out.is_not(None))
    )

    return {
        "month": month,
        "year": year,
        "employee_id": employee_id,
        "total_records": sum(counts.values()),
        "total_present": counts.get(AttendanceStatus.PRESENT, 0),
        "total_late": counts.get(AttendanceStatus.LATE, 0),
        "total_half_day": counts.get(AttendanceStatus.HALF_DAY, 0),
        "total_partial": counts.get(AttendanceStatus.PARTIAL, 0),
        "avg_hours": (
            Decimal(str(avg_hours)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            if avg_hours is not None
            else None
        ),
    }
