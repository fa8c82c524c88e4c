from __future__ import annotations

import logging

from sqlalchemy import Date, func, literal, or_, select
from sqlalchemy.orm import Session

from app.errors import LeaveOverlapError
from app.models import ACTIVE_LEAVE_STATUSES, Employee, LeaveRequest

logger = logging.getLogger("app.leaves")


def _lock_employee_leave_writes(db: Session, employee_id: int) -> None:
    # Concurrent leave writes for one employee queue here, so two requests
    # cannot both pass the count before either is flushed.
    db.execute(select(Employee.id).where(Employee.id == employee_id).with_for_update())


def count_overlapping_leave_requests(db: Session, leave: LeaveRequest) -> int:
    """Count other active requests of the same employee touching ``leave``'s range.

    Both endpoints are inclusive: a request ending on day 5 and another
    starting on day 5 collide.
    """
    new_start = literal(leave.start_date, Date)
    new_end = literal(leave.end_date, Date)

    stmt = select(func.count(LeaveRequest.id)).where(
        LeaveRequest.employee_id == leave.employee_id,
        LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
        or_(
            new_start.between(LeaveRequest.start_date, LeaveRequest.end_date),
            new_end.between(LeaveRequest.start_date, LeaveRequest.end_date),
            LeaveRequest.start_date.between(new_start, new_end),
            LeaveRequest.end_date.between(new_start, new_end),
        ),
    )
    if leave.id is not None:
        stmt = stmt.where(LeaveRequest.id != leave.id)

    return int(db.scalar(stmt) or 0)


def ensure_no_overlapping_leave(db: Session, leave: LeaveRequest) -> None:
    """Before-save check for leave requests.

    Only pending and approved requests are guarded; rejecting or cancelling a
    request never trips it.
    """
    if leave.status not in ACTIVE_LEAVE_STATUSES:
        return

    _lock_employee_leave_writes(db, leave.employee_id)
    overlap_count = count_overlapping_leave_requests(db, leave)
    if overlap_count > 0:
        logger.info(
            "leave_overlap_rejected",
            extra={
                "employee_id": leave.employee_id,
                "leave_request_id": leave.id,
                "start_date": leave.start_date,
                "end_date": leave.end_date,
                "overlap_count": overlap_count,
            },
        )
        raise LeaveOverlapError(employee_id=leave.employee_id, overlap_count=overlap_count)
