from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app
from app.models import AttendanceRecord, AttendanceStatus, AuditLog, Employee, LeaveRequest, LeaveType


def _build_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def _override_get_db(db: Session):
    def _override() -> Generator[Session, None, None]:
        yield db

    return _override


class LeaveEndpointsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _build_session()
        self.db.add_all(
            [
                Employee(id=1, full_name="Ada Worker", is_active=True),
                LeaveType(id=1, name="Annual Leave", code="AL", is_active=True),
            ]
        )
        self.db.commit()
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _create(self, start: str, end: str, days: str = "2"):
        return self.client.post(
            "/api/leave-requests",
            json={
                "employee_id": 1,
                "leave_type_id": 1,
                "start_date": start,
                "end_date": end,
                "days_requested": days,
            },
        )

    def test_overlap_is_reported_as_distinct_conflict(self) -> None:
        first = self._create("2026-05-05", "2026-05-10", "6")
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["status"], "pending")

        second = self._create("2026-05-10", "2026-05-12", "3")

        self.assertEqual(second.status_code, 409)
        error = second.json()["error"]
        self.assertEqual(error["code"], "LEAVE_OVERLAP")
        self.assertEqual(error["message"], "Overlapping leave request exists for this employee")
        self.assertIn("request_id", error)
        self.assertEqual(len(self.db.scalars(select(LeaveRequest)).all()), 1)

    def test_review_updates_balance_and_writes_audit(self) -> None:
        created = self._create("2026-05-05", "2026-05-07", "3").json()

        response = self.client.post(
            f"/api/leave-requests/{created['id']}/review",
            json={"status": "approved", "reviewer": "hr.lead"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "approved")

        balances = self.client.get("/api/leave-balances", params={"employee_id": 1, "year": 2026})
        self.assertEqual(balances.status_code, 200)
        body = balances.json()
        self.assertEqual(len(body), 1)
        self.assertEqual(float(body[0]["used_balance"]), 3.0)
        self.assertEqual(float(body[0]["current_balance"]), 17.0)

        audit = self.db.scalars(select(AuditLog)).all()
        self.assertEqual([item.action for item in audit], ["LEAVE_REQUEST_REVIEWED"])
        self.assertEqual(audit[0].entity_type, "leave_requests")

    def test_invalid_review_status_is_validation_error(self) -> None:
        created = self._create("2026-05-05", "2026-05-07", "3").json()

        response = self.client.post(
            f"/api/leave-requests/{created['id']}/review",
            json={"status": "cancelled", "reviewer": "hr.lead"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_cancel_endpoint_restores_approved_days(self) -> None:
        created = self._create("2026-05-05", "2026-05-07", "3").json()
        self.client.post(
            f"/api/leave-requests/{created['id']}/review",
            json={"status": "approved", "reviewer": "hr.lead"},
        )

        response = self.client.post(
            f"/api/leave-requests/{created['id']}/cancel",
            json={"cancelled_by": "hr.lead", "cancellation_reason": "duplicate"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "cancelled")
        balances = self.client.get("/api/leave-balances", params={"employee_id": 1, "year": 2026}).json()
        self.assertEqual(float(balances[0]["used_balance"]), 0.0)
        self.assertEqual(float(balances[0]["current_balance"]), 20.0)

    def test_unknown_leave_request_is_not_found(self) -> None:
        response = self.client.get("/api/leave-requests/999")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_FOUND")

    def test_health_is_a_liveness_ping(self) -> None:
        with patch("app.services.consistency.run_consistency_checks") as consistency:
            response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["database"], "ok")
        self.assertNotIn("consistency", body)
        consistency.assert_not_called()

    def test_leave_type_can_be_edited_and_deactivated(self) -> None:
        response = self.client.patch("/api/leave-types/1", json={"name": "Annual", "code": "ann"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["code"], "ANN")
        self.assertTrue(response.json()["is_active"])

        response = self.client.delete("/api/leave-types/1")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])

        self.assertEqual(self.client.get("/api/leave-types").json(), [])
        listed = self.client.get("/api/leave-types", params={"include_inactive": "true"}).json()
        self.assertEqual([item["code"] for item in listed], ["ANN"])

        blocked = self._create("2026-05-05", "2026-05-07", "3")
        self.assertEqual(blocked.status_code, 404)

    def test_unknown_leave_type_update_is_not_found(self) -> None:
        response = self.client.patch("/api/leave-types/99", json={"is_active": False})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_FOUND")

    def test_leave_types_listing(self) -> None:
        response = self.client.get("/api/leave-types")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["code"] for item in response.json()], ["AL"])


class AttendanceEndpointsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _build_session()
        self.db.add(Employee(id=1, full_name="Ada Worker", is_active=True))
        self.db.commit()
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def test_clock_in_and_double_clock_in(self) -> None:
        response = self.client.post("/api/attendance/clock-in", json={"employee_id": 1})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["employee_id"], 1)
        self.assertIn("date", body)
        self.assertIsNone(body["check_out"])

        again = self.client.post("/api/attendance/clock-in", json={"employee_id": 1})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "ALREADY_CHECKED_IN")

    def test_clock_out_without_clock_in(self) -> None:
        response = self.client.post("/api/attendance/clock-out", json={"employee_id": 1})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "NOT_CHECKED_IN")

    def test_monthly_stats_endpoint(self) -> None:
        self.db.add_all(
            [
                AttendanceRecord(
                    employee_id=1,
                    work_date=date(2026, 3, 2),
                    total_hours=Decimal("9.00"),
                    overtime_hours=Decimal("1.00"),
                    status=AttendanceStatus.PRESENT,
                    check_in=datetime(2026, 3, 2, 9, tzinfo=timezone.utc),
                    check_out=datetime(2026, 3, 2, 18, tzinfo=timezone.utc),
                ),
                AttendanceRecord(
                    employee_id=1,
                    work_date=date(2026, 3, 3),
                    total_hours=Decimal("4.50"),
                    overtime_hours=Decimal("0"),
                    status=AttendanceStatus.HALF_DAY,
                    check_in=datetime(2026, 3, 3, 9, tzinfo=timezone.utc),
                    check_out=datetime(2026, 3, 3, 13, 30, tzinfo=timezone.utc),
                ),
            ]
        )
        self.db.commit()

        response = self.client.get("/api/attendance/stats", params={"month": 3, "year": 2026, "employee_id": 1})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total_records"], 2)
        self.assertEqual(body["total_present"], 1)
        self.assertEqual(body["total_half_day"], 1)
        self.assertEqual(float(body["avg_hours"]), 6.75)

    def test_stats_rejects_invalid_month(self) -> None:
        response = self.client.get("/api/attendance/stats", params={"month": 13, "year": 2026})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")


if __name__ == "__main__":
    unittest.main()
