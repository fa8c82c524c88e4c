"""Per-employee, per-leave-type, per-year leave balance ledger.

The ledger is adjusted incrementally by the after-save hook
``apply_leave_balance_transition``; it is never recomputed from the request
history. Only two status edges move days:

* anything that is not ``approved`` (including a fresh insert) -> ``approved``
  debits ``days_requested``;
* ``approved`` -> ``rejected`` credits it back.

Every other edge leaves the balance untouched. Cancelling an approved
request is handled outside the table by ``restore_cancelled_leave``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.models import Employee, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType
from app.settings import get_settings

logger = logging.getLogger("app.leave_balances")

DEBIT = 1
CREDIT = -1

BALANCE_TRANSITIONS: dict[tuple[LeaveStatus | None, LeaveStatus], int] = {
    (None, LeaveStatus.APPROVED): DEBIT,
    (LeaveStatus.PENDING, LeaveStatus.APPROVED): DEBIT,
    (LeaveStatus.REJECTED, LeaveStatus.APPROVED): DEBIT,
    (LeaveStatus.CANCELLED, LeaveStatus.APPROVED): DEBIT,
    (LeaveStatus.APPROVED, LeaveStatus.REJECTED): CREDIT,
}


def ledger_year(leave: LeaveRequest) -> int:
    return leave.start_date.year


def balance_direction(previous_status: LeaveStatus | None, new_status: LeaveStatus) -> int | None:
    previous = LeaveStatus(previous_status) if previous_status is not None else None
    return BALANCE_TRANSITIONS.get((previous, LeaveStatus(new_status)))


def _dialect_insert(db: Session):
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def ensure_leave_balance(
    db: Session,
    *,
    employee_id: int,
    leave_type_id: int,
    year: int,
    entitlement_days: int | None = None,
) -> None:
    """Create the balance row unless it exists, tolerating concurrent creators."""
    if entitlement_days is None:
        entitlement_days = get_settings().default_leave_entitlement_days
    entitlement = Decimal(entitlement_days)

    insert = _dialect_insert(db)
    stmt = (
        insert(LeaveBalance)
        .values(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            accrued_balance=entitlement,
            used_balance=Decimal("0"),
            current_balance=entitlement,
        )
        .on_conflict_do_nothing(index_elements=["employee_id", "leave_type_id", "year"])
    )
    db.execute(stmt)


def get_leave_balance(db: Session, *, employee_id: int, leave_type_id: int, year: int) -> LeaveBalance | None:
    return db.scalar(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        .execution_options(populate_existing=True)
    )


def _adjust_balance(
    db: Session,
    *,
    employee_id: int,
    leave_type_id: int,
    year: int,
    days: Decimal,
) -> int:
    result = db.execute(
        update(LeaveBalance)
        .where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        .values(
            used_balance=LeaveBalance.used_balance + days,
            current_balance=LeaveBalance.current_balance - days,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def apply_leave_balance_transition(
    db: Session,
    leave: LeaveRequest,
    *,
    previous_status: LeaveStatus | None,
) -> int | None:
    """After-save hook: keep the ledger in step with ``leave``'s status change.

    Must run in the same transaction as the leave write, after the overlap
    check has passed. Returns the direction applied, or ``None`` for a no-op.
    """
    year = ledger_year(leave)
    ensure_leave_balance(db, employee_id=leave.employee_id, leave_type_id=leave.leave_type_id, year=year)

    direction = balance_direction(previous_status, leave.status)
    if direction is None:
        logger.debug(
            "leave_balance_transition_noop",
            extra={
                "leave_request_id": leave.id,
                "previous_status": previous_status,
                "new_status": leave.status,
            },
        )
        return None

    days = Decimal(leave.days_requested) * direction
    matched = _adjust_balance(
        db,
        employee_id=leave.employee_id,
        leave_type_id=leave.leave_type_id,
        year=year,
        days=days,
    )
    if matched == 0:
        # The adjustment is dropped; the warning is the only trace of it.
        logger.warning(
            "leave_balance_row_missing",
            extra={
                "leave_request_id": leave.id,
                "employee_id": leave.employee_id,
                "leave_type_id": leave.leave_type_id,
                "year": year,
                "days": days,
            },
        )
        return None

    logger.info(
        "leave_balance_adjusted",
        extra={
            "leave_request_id": leave.id,
            "employee_id": leave.employee_id,
            "leave_type_id": leave.leave_type_id,
            "year": year,
            "used_delta": days,
        },
    )
    return direction


def restore_cancelled_leave(db: Session, leave: LeaveRequest) -> Decimal | None:
    """Give back the days of an approved request that is being cancelled.

    Cancellation is not a status edge in ``BALANCE_TRANSITIONS``; the leave
    service calls this explicitly, inside the same transaction as the
    cancel, only when the request was approved. Returns the days restored,
    or ``None`` when the balance row is missing.
    """
    year = ledger_year(leave)
    ensure_leave_balance(db, employee_id=leave.employee_id, leave_type_id=leave.leave_type_id, year=year)

    days = Decimal(leave.days_requested)
    matched = _adjust_balance(
        db,
        employee_id=leave.employee_id,
        leave_type_id=leave.leave_type_id,
        year=year,
        days=-days,
    )
    if matched == 0:
        logger.warning(
            "leave_balance_row_missing",
            extra={
                "leave_request_id": leave.id,
                "employee_id": leave.employee_id,
                "leave_type_id": leave.leave_type_id,
                "year": year,
                "days": -days,
            },
        )
        return None

    logger.info(
        "leave_balance_restored",
        extra={
            "leave_request_id": leave.id,
            "employee_id": leave.employee_id,
            "leave_type_id": leave.leave_type_id,
            "year": year,
            "days_restored": days,
        },
    )
    return days


def list_leave_balances(db: Session, *, employee_id: int, year: int) -> list[LeaveBalance]:
    if db.get(Employee, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    active_type_ids = db.scalars(select(LeaveType.id).where(LeaveType.is_active.is_(True))).all()
    for leave_type_id in active_type_ids:
        ensure_leave_balance(db, employee_id=employee_id, leave_type_id=leave_type_id, year=year)
    db.commit()

    return list(
        db.scalars(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .order_by(LeaveBalance.leave_type_id.asc())
            .execution_options(populate_existing=True)
        ).all()
    )
