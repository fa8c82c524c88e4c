"""Derived hour fields for attendance records.

``apply_attendance_hours`` is the before-save hook for every attendance
write. It owns ``total_hours``, ``overtime_hours`` and (once the session is
closed) ``status``; nothing else assigns those fields.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from app.models import AttendanceRecord, AttendanceStatus

STANDARD_WORKDAY_HOURS = Decimal("8")
HALF_DAY_HOURS = Decimal("4")

_SECONDS_PER_HOUR = Decimal("3600")
_HOURS_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class AttendanceHours:
    total_hours: Decimal
    overtime_hours: Decimal
    status: AttendanceStatus


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _span_hours(start: datetime, end: datetime) -> Decimal:
    seconds = (_as_utc(end) - _as_utc(start)).total_seconds()
    return Decimal(str(seconds)) / _SECONDS_PER_HOUR


def _round_hours(value: Decimal) -> Decimal:
    # ROUND_HALF_UP on Decimal rounds half away from zero, like numeric ROUND in PostgreSQL.
    return value.quantize(_HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def classify_worked_hours(total_hours: Decimal) -> AttendanceStatus:
    if total_hours >= STANDARD_WORKDAY_HOURS:
        return AttendanceStatus.PRESENT
    if total_hours >= HALF_DAY_HOURS:
        return AttendanceStatus.HALF_DAY
    return AttendanceStatus.PARTIAL


def compute_attendance_hours(
    check_in: datetime | None,
    check_out: datetime | None,
    break_start: datetime | None = None,
    break_end: datetime | None = None,
) -> AttendanceHours | None:
    """Return worked hours for a closed session, or ``None`` while it is open.

    Check-out before check-in is not rejected: the negative total simply
    lands in the ``partial`` bucket.
    """
    if check_in is None or check_out is None:
        return None

    work_hours = _span_hours(check_in, check_out)
    break_hours = Decimal("0")
    if break_start is not None and break_end is not None:
        break_hours = _span_hours(break_start, break_end)

    total_hours = _round_hours(work_hours - break_hours)
    if total_hours > STANDARD_WORKDAY_HOURS:
        overtime_hours = _round_hours(total_hours - STANDARD_WORKDAY_HOURS)
    else:
        overtime_hours = Decimal("0.00")

    return AttendanceHours(
        total_hours=total_hours,
        overtime_hours=overtime_hours,
        status=classify_worked_hours(total_hours),
    )


def apply_attendance_hours(record: AttendanceRecord, now: datetime | None = None) -> AttendanceRecord:
    hours = compute_attendance_hours(
        record.check_in,
        record.check_out,
        record.break_start,
        record.break_end,
    )
    if hours is not None:
        record.total_hours = hours.total_hours
        record.overtime_hours = hours.overtime_hours
        record.status = hours.status

    record.updated_at = now or datetime.now(timezone.utc)
    return record
