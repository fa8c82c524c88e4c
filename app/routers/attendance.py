from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.audit import record_audit
from app.db import get_db
from app.models import AttendanceRecord, AuditActorType
from app.schemas import (
    AttendanceBreakRequest,
    AttendanceClockRequest,
    AttendanceNotesUpdateRequest,
    AttendanceRecordRead,
    AttendanceStatsRead,
)
from app.services.attendance import (
    attendance_stats,
    clock_in,
    clock_out,
    end_break,
    get_today_record,
    list_attendance_records,
    start_break,
    update_attendance_notes,
)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


def _audit_clock_action(db: Session, request: Request, record: AttendanceRecord, action: str) -> None:
    request.state.actor = "employee"
    request.state.actor_id = str(record.employee_id)
    request.state.employee_id = record.employee_id
    record_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=record.employee_id,
        action=action,
        entity=record,
        details={
            "status": record.status.value if record.status is not None else None,
            "total_hours": str(record.total_hours),
        },
        request_id=getattr(request.state, "request_id", None),
    )


@router.post("/clock-in", response_model=AttendanceRecordRead)
def clock_in_endpoint(
    payload: AttendanceClockRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecord:
    record = clock_in(db, employee_id=payload.employee_id, notes=payload.notes)
    _audit_clock_action(db, request, record, "ATTENDANCE_CLOCK_IN")
    return record


@router.post("/break-start", response_model=AttendanceRecordRead)
def break_start_endpoint(
    payload: AttendanceBreakRequest,
    db: Session = Depends(get_db),
) -> AttendanceRecord:
    return start_break(db, employee_id=payload.employee_id)


@router.post("/break-end", response_model=AttendanceRecordRead)
def break_end_endpoint(
    payload: AttendanceBreakRequest,
    db: Session = Depends(get_db),
) -> AttendanceRecord:
    return end_break(db, employee_id=payload.employee_id)


@router.post("/clock-out", response_model=AttendanceRecordRead)
def clock_out_endpoint(
    payload: AttendanceClockRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecord:
    record = clock_out(db, employee_id=payload.employee_id, notes=payload.notes)
    _audit_clock_action(db, request, record, "ATTENDANCE_CLOCK_OUT")
    return record


@router.get("/today", response_model=AttendanceRecordRead | None)
def today_endpoint(
    employee_id: int = Query(...),
    db: Session = Depends(get_db),
) -> AttendanceRecord | None:
    return get_today_record(db, employee_id=employee_id)


@router.get("", response_model=list[AttendanceRecordRead])
def list_endpoint(
    employee_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[AttendanceRecord]:
    return list_attendance_records(db, employee_id=employee_id, date_from=date_from, date_to=date_to)


@router.get("/stats", response_model=AttendanceStatsRead)
def stats_endpoint(
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=1970, le=2100),
    employee_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return attendance_stats(db, month=month, year=year, employee_id=employee_id)


@router.patch("/{record_id}/notes", response_model=AttendanceRecordRead)
def update_notes_endpoint(
    record_id: int,
    payload: AttendanceNotesUpdateRequest,
    db: Session = Depends(get_db),
) -> AttendanceRecord:
    return update_attendance_notes(db, record_id=record_id, notes=payload.notes)
