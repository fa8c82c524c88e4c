from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import Employee, LeaveRequest, LeaveStatus, LeaveType
from app.schemas import (
    LeaveRequestCreateRequest,
    LeaveRequestUpdateRequest,
    LeaveTypeCreateRequest,
    LeaveTypeUpdateRequest,
)
from app.services.leave_balances import apply_leave_balance_transition, restore_cancelled_leave
from app.services.leave_overlap import ensure_no_overlapping_leave

logger = logging.getLogger("app.leaves")

REVIEW_TRANSITIONS: set[tuple[LeaveStatus, LeaveStatus]] = {
    (LeaveStatus.PENDING, LeaveStatus.APPROVED),
    (LeaveStatus.PENDING, LeaveStatus.REJECTED),
    (LeaveStatus.APPROVED, LeaveStatus.APPROVED),
    (LeaveStatus.APPROVED, LeaveStatus.REJECTED),
}
CANCELLABLE_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)


def _ensure_employee_exists(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return employee


def _ensure_active_leave_type(db: Session, leave_type_id: int) -> LeaveType:
    leave_type = db.get(LeaveType, leave_type_id)
    if leave_type is None or not leave_type.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave type not found")
    return leave_type


def _validate_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must be greater than or equal to start_date",
        )


def get_leave_request(db: Session, leave_id: int) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_id)
    if leave is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave request not found")
    return leave


def save_leave_request(
    db: Session,
    leave: LeaveRequest,
    *,
    previous_status: LeaveStatus | None,
    restore_balance: bool = False,
) -> LeaveRequest:
    """Write ``leave`` with its consistency rules in one transaction.

    Order matters: the overlap check runs before the row is flushed and the
    balance ledger runs after it, so a rejected write leaves neither the
    request nor the balance changed. ``restore_balance`` credits the
    request's days back in the same transaction (cancelling approved leave).
    """
    try:
        ensure_no_overlapping_leave(db, leave)
        db.add(leave)
        db.flush()
        apply_leave_balance_transition(db, leave, previous_status=previous_status)
        if restore_balance:
            restore_cancelled_leave(db, leave)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


def create_leave_request(db: Session, payload: LeaveRequestCreateRequest) -> LeaveRequest:
    _ensure_employee_exists(db, payload.employee_id)
    _ensure_active_leave_type(db, payload.leave_type_id)
    _validate_range(payload.start_date, payload.end_date)

    leave = LeaveRequest(
        employee_id=payload.employee_id,
        leave_type_id=payload.leave_type_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        days_requested=payload.days_requested,
        reason=payload.reason,
        status=LeaveStatus.PENDING,
    )
    saved = save_leave_request(db, leave, previous_status=None)
    logger.info(
        "leave_request_created",
        extra={
            "leave_request_id": saved.id,
            "employee_id": saved.employee_id,
            "leave_type_id": saved.leave_type_id,
            "days_requested": saved.days_requested,
        },
    )
    return saved


def update_leave_request(db: Session, leave_id: int, payload: LeaveRequestUpdateRequest) -> LeaveRequest:
    leave = get_leave_request(db, leave_id)
    if leave.status != LeaveStatus.PENDING:
        raise ApiError(
            status_code=409,
            code="LEAVE_NOT_EDITABLE",
            message="Only pending leave requests can be edited.",
        )

    start_date = payload.start_date or leave.start_date
    end_date = payload.end_date or leave.end_date
    _validate_range(start_date, end_date)

    leave.start_date = start_date
    leave.end_date = end_date
    if payload.days_requested is not None:
        leave.days_requested = payload.days_requested
    if payload.reason is not None:
        leave.reason = payload.reason

    return save_leave_request(db, leave, previous_status=LeaveStatus.PENDING)


def review_leave_request(
    db: Session,
    leave_id: int,
    *,
    new_status: LeaveStatus,
    reviewer: str,
    comment: str | None = None,
) -> LeaveRequest:
    leave = get_leave_request(db, leave_id)
    previous_status = LeaveStatus(leave.status)
    new_status = LeaveStatus(new_status)
    if (previous_status, new_status) not in REVIEW_TRANSITIONS:
        raise ApiError(
            status_code=409,
            code="INVALID_LEAVE_TRANSITION",
            message=f"Cannot move a {previous_status.value} leave request to {new_status.value}.",
        )

    leave.status = new_status
    leave.reviewed_by = reviewer
    leave.reviewed_at = datetime.now(timezone.utc)
    if comment is not None:
        leave.reviewer_comment = comment

    saved = save_leave_request(db, leave, previous_status=previous_status)
    logger.info(
        "leave_request_reviewed",
        extra={
            "leave_request_id": saved.id,
            "employee_id": saved.employee_id,
            "previous_status": previous_status.value,
            "new_status": new_status.value,
            "reviewer": reviewer,
        },
    )
    return saved


def cancel_leave_request(
    db: Session,
    leave_id: int,
    *,
    cancelled_by: str,
    reason: str,
) -> LeaveRequest:
    if not reason.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Cancellation reason is required",
        )

    leave = get_leave_request(db, leave_id)
    previous_status = LeaveStatus(leave.status)
    if previous_status not in CANCELLABLE_STATUSES:
        raise ApiError(
            status_code=409,
            code="INVALID_LEAVE_TRANSITION",
            message=f"Cannot cancel a {previous_status.value} leave request.",
        )

    leave.status = LeaveStatus.CANCELLED
    leave.cancelled_by = cancelled_by
    leave.cancelled_at = datetime.now(timezone.utc)
    leave.cancellation_reason = reason.strip()
    saved = save_leave_request(
        db,
        leave,
        previous_status=previous_status,
        restore_balance=previous_status == LeaveStatus.APPROVED,
    )
    logger.info(
        "leave_request_cancelled",
        extra={
            "leave_request_id": saved.id,
            "employee_id": saved.employee_id,
            "previous_status": previous_status.value,
            "balance_restored": previous_status == LeaveStatus.APPROVED,
        },
    )
    return saved


def list_leave_requests(
    db: Session,
    *,
    employee_id: int | None,
    status_filter: LeaveStatus | None,
    year: int | None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if status_filter is not None:
        stmt = stmt.where(LeaveRequest.status == status_filter)
    if year is not None:
        stmt = stmt.where(
            LeaveRequest.start_date <= date(year, 12, 31),
            LeaveRequest.end_date >= date(year, 1, 1),
        )
    return list(db.scalars(stmt).all())


def list_leave_types(db: Session, *, include_inactive: bool = False) -> list[LeaveType]:
    stmt = select(LeaveType).order_by(LeaveType.name.asc(), LeaveType.id.asc())
    if not include_inactive:
        stmt = stmt.where(LeaveType.is_active.is_(True))
    return list(db.scalars(stmt).all())


def create_leave_type(db: Session, payload: LeaveTypeCreateRequest) -> LeaveType:
    leave_type = LeaveType(
        name=payload.name.strip(),
        code=payload.code,
        description=payload.description,
        is_paid=payload.is_paid,
        is_active=True,
    )
    db.add(leave_type)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="LEAVE_TYPE_CODE_TAKEN",
            message=f"Leave type code {payload.code} already exists.",
        ) from exc
    db.refresh(leave_type)
    return leave_type


def get_leave_type(db: Session, leave_type_id: int) -> LeaveType:
    leave_type = db.get(LeaveType, leave_type_id)
    if leave_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Leave type not found")
    return leave_type


def update_leave_type(db: Session, leave_type_id: int, payload: LeaveTypeUpdateRequest) -> LeaveType:
    """Edit a leave type; ``is_active=False`` retires it.

    Retired types stop accepting new requests and get no new balance rows.
    Existing requests and balances are kept.
    """
    leave_type = get_leave_type(db, leave_type_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") is not None:
        changes["name"] = changes["name"].strip()
    for field_name, value in changes.items():
        if value is None and field_name != "description":
            continue
        setattr(leave_type, field_name, value)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="LEAVE_TYPE_CODE_TAKEN",
            message=f"Leave type code {payload.code} already exists.",
        ) from exc
    db.refresh(leave_type)
    logger.info(
        "leave_type_updated",
        extra={
            "leave_type_id": leave_type.id,
            "fields": sorted(changes),
            "is_active": leave_type.is_active,
        },
    )
    return leave_type


def deactivate_leave_type(db: Session, leave_type_id: int) -> LeaveType:
    return update_leave_type(db, leave_type_id, LeaveTypeUpdateRequest(is_active=False))
