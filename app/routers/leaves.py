from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.audit import record_audit
from app.db import get_db
from app.models import AuditActorType, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType
from app.schemas import (
    LeaveBalanceRead,
    LeaveRequestCancelRequest,
    LeaveRequestCreateRequest,
    LeaveRequestRead,
    LeaveRequestReviewRequest,
    LeaveRequestUpdateRequest,
    LeaveTypeCreateRequest,
    LeaveTypeRead,
    LeaveTypeUpdateRequest,
)
from app.services.leave_balances import list_leave_balances
from app.services.leaves import (
    cancel_leave_request,
    create_leave_request,
    create_leave_type,
    deactivate_leave_type,
    get_leave_request,
    list_leave_requests,
    list_leave_types,
    review_leave_request,
    update_leave_request,
    update_leave_type,
)

router = APIRouter(prefix="/api", tags=["leaves"])


@router.get("/leave-types", response_model=list[LeaveTypeRead])
def list_leave_types_endpoint(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[LeaveType]:
    return list_leave_types(db, include_inactive=include_inactive)


@router.post("/leave-types", response_model=LeaveTypeRead, status_code=status.HTTP_201_CREATED)
def create_leave_type_endpoint(
    payload: LeaveTypeCreateRequest,
    db: Session = Depends(get_db),
) -> LeaveType:
    return create_leave_type(db, payload)


@router.patch("/leave-types/{leave_type_id}", response_model=LeaveTypeRead)
def update_leave_type_endpoint(
    leave_type_id: int,
    payload: LeaveTypeUpdateRequest,
    db: Session = Depends(get_db),
) -> LeaveType:
    return update_leave_type(db, leave_type_id, payload)


@router.delete("/leave-types/{leave_type_id}", response_model=LeaveTypeRead)
def deactivate_leave_type_endpoint(leave_type_id: int, db: Session = Depends(get_db)) -> LeaveType:
    return deactivate_leave_type(db, leave_type_id)


@router.post("/leave-requests", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def create_leave_request_endpoint(
    payload: LeaveRequestCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LeaveRequest:
    request.state.employee_id = payload.employee_id
    return create_leave_request(db, payload)


@router.get("/leave-requests", response_model=list[LeaveRequestRead])
def list_leave_requests_endpoint(
    employee_id: int | None = Query(default=None),
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    year: int | None = Query(default=None, ge=1970, le=2100),
    db: Session = Depends(get_db),
) -> list[LeaveRequest]:
    return list_leave_requests(db, employee_id=employee_id, status_filter=status_filter, year=year)


@router.get("/leave-requests/{leave_id}", response_model=LeaveRequestRead)
def get_leave_request_endpoint(leave_id: int, db: Session = Depends(get_db)) -> LeaveRequest:
    return get_leave_request(db, leave_id)


@router.patch("/leave-requests/{leave_id}", response_model=LeaveRequestRead)
def update_leave_request_endpoint(
    leave_id: int,
    payload: LeaveRequestUpdateRequest,
    db: Session = Depends(get_db),
) -> LeaveRequest:
    return update_leave_request(db, leave_id, payload)


@router.post("/leave-requests/{leave_id}/review", response_model=LeaveRequestRead)
def review_leave_request_endpoint(
    leave_id: int,
    payload: LeaveRequestReviewRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LeaveRequest:
    request.state.actor = "reviewer"
    request.state.actor_id = payload.reviewer
    leave = review_leave_request(
        db,
        leave_id,
        new_status=LeaveStatus(payload.status),
        reviewer=payload.reviewer,
        comment=payload.comment,
    )
    record_audit(
        db,
        actor_type=AuditActorType.REVIEWER,
        actor_id=payload.reviewer,
        action="LEAVE_REQUEST_REVIEWED",
        entity=leave,
        details={"status": leave.status.value, "days_requested": str(leave.days_requested)},
        request_id=getattr(request.state, "request_id", None),
    )
    return leave


@router.post("/leave-requests/{leave_id}/cancel", response_model=LeaveRequestRead)
def cancel_leave_request_endpoint(
    leave_id: int,
    payload: LeaveRequestCancelRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LeaveRequest:
    request.state.actor = "reviewer"
    request.state.actor_id = payload.cancelled_by
    leave = cancel_leave_request(
        db,
        leave_id,
        cancelled_by=payload.cancelled_by,
        reason=payload.cancellation_reason,
    )
    record_audit(
        db,
        actor_type=AuditActorType.REVIEWER,
        actor_id=payload.cancelled_by,
        action="LEAVE_REQUEST_CANCELLED",
        entity=leave,
        details={"reason": leave.cancellation_reason},
        request_id=getattr(request.state, "request_id", None),
    )
    return leave


@router.get("/leave-balances", response_model=list[LeaveBalanceRead])
def list_leave_balances_endpoint(
    employee_id: int = Query(...),
    year: int | None = Query(default=None, ge=1970, le=2100),
    db: Session = Depends(get_db),
) -> list[LeaveBalance]:
    target_year = year if year is not None else date.today().year
    return list_leave_balances(db, employee_id=employee_id, year=target_year)
