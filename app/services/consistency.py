"""Read-only audits of the invariants the write-path rules maintain.

The write path keeps these invariants incrementally; these queries look for
rows where they no longer hold (manual SQL edits, partial restores, the
start-date drift the ledger does not correct).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session, aliased

from app.models import ACTIVE_LEAVE_STATUSES, AttendanceRecord, LeaveBalance, LeaveRequest
from app.services.attendance_hours import compute_attendance_hours

SAMPLE_LIMIT = 20


@dataclass(slots=True)
class ConsistencyCheck:
    name: str
    status: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def check_balance_drift(db: Session) -> ConsistencyCheck:
    rows = db.execute(
        select(
            LeaveBalance.id,
            LeaveBalance.employee_id,
            LeaveBalance.leave_type_id,
            LeaveBalance.year,
            LeaveBalance.accrued_balance,
            LeaveBalance.used_balance,
            LeaveBalance.current_balance,
        )
        .where(LeaveBalance.current_balance != LeaveBalance.accrued_balance - LeaveBalance.used_balance)
        .order_by(LeaveBalance.id.asc())
        .limit(SAMPLE_LIMIT)
    ).all()
    return ConsistencyCheck(
        name="leave_balance_drift",
        status="fail" if rows else "ok",
        details={
            "sample": [
                {
                    "balance_id": row.id,
                    "employee_id": row.employee_id,
                    "leave_type_id": row.leave_type_id,
                    "year": row.year,
                    "accrued": str(row.accrued_balance),
                    "used": str(row.used_balance),
                    "current": str(row.current_balance),
                }
                for row in rows
            ]
        },
    )


def check_active_leave_overlaps(db: Session) -> ConsistencyCheck:
    other = aliased(LeaveRequest)
    rows = db.execute(
        select(LeaveRequest.employee_id, LeaveRequest.id, other.id)
        .join(
            other,
            and_(
                other.employee_id == LeaveRequest.employee_id,
                other.id > LeaveRequest.id,
                other.start_date <= LeaveRequest.end_date,
                other.end_date >= LeaveRequest.start_date,
            ),
        )
        .where(
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            other.status.in_(ACTIVE_LEAVE_STATUSES),
        )
        .order_by(LeaveRequest.id.asc(), other.id.asc())
        .limit(SAMPLE_LIMIT)
    ).all()
    return ConsistencyCheck(
        name="active_leave_overlap",
        status="fail" if rows else "ok",
        details={"pairs": [[employee_id, first_id, second_id] for employee_id, first_id, second_id in rows]},
    )


def check_attendance_hours(db: Session) -> ConsistencyCheck:
    records = db.scalars(
        select(AttendanceRecord)
        .where(AttendanceRecord.check_in.is_not(None), AttendanceRecord.check_out.is_not(None))
        .order_by(AttendanceRecord.id.asc())
        .execution_options(yield_per=500)
    )
    mismatched: list[int] = []
    for record in records:
        expected = compute_attendance_hours(
            record.check_in,
            record.check_out,
            record.break_start,
            record.break_end,
        )
        if expected is None:
            continue
        if (
            expected.total_hours != record.total_hours
            or expected.overtime_hours != record.overtime_hours
            or expected.status != record.status
        ):
            mismatched.append(record.id)
            if len(mismatched) >= SAMPLE_LIMIT:
                break
    return ConsistencyCheck(
        name="attendance_hours_mismatch",
        status="warn" if mismatched else "ok",
        details={"sample_ids": mismatched},
    )


def run_consistency_checks(db: Session) -> list[ConsistencyCheck]:
    return [
        check_balance_drift(db),
        check_active_leave_overlaps(db),
        check_attendance_hours(db),
    ]
