from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.models import Employee, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType
from app.services.leave_balances import (
    BALANCE_TRANSITIONS,
    CREDIT,
    DEBIT,
    apply_leave_balance_transition,
    balance_direction,
    ensure_leave_balance,
    get_leave_balance,
    list_leave_balances,
    restore_cancelled_leave,
)
from app.services.leaves import save_leave_request


def _build_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class BalanceTransitionTableTests(unittest.TestCase):
    def test_first_approval_debits_from_any_other_status(self) -> None:
        for previous in (None, LeaveStatus.PENDING, LeaveStatus.REJECTED, LeaveStatus.CANCELLED):
            self.assertEqual(balance_direction(previous, LeaveStatus.APPROVED), DEBIT)

    def test_only_approved_to_rejected_credits(self) -> None:
        self.assertEqual(balance_direction(LeaveStatus.APPROVED, LeaveStatus.REJECTED), CREDIT)
        self.assertEqual(
            [pair for pair, direction in BALANCE_TRANSITIONS.items() if direction == CREDIT],
            [(LeaveStatus.APPROVED, LeaveStatus.REJECTED)],
        )

    def test_unmodeled_transitions_are_noops(self) -> None:
        noop_pairs = [
            (None, LeaveStatus.PENDING),
            (LeaveStatus.PENDING, LeaveStatus.PENDING),
            (LeaveStatus.PENDING, LeaveStatus.REJECTED),
            (LeaveStatus.APPROVED, LeaveStatus.APPROVED),
            (LeaveStatus.APPROVED, LeaveStatus.CANCELLED),
            (LeaveStatus.PENDING, LeaveStatus.CANCELLED),
        ]
        for previous, new in noop_pairs:
            self.assertIsNone(balance_direction(previous, new), msg=f"{previous} -> {new}")

    def test_plain_string_statuses_are_accepted(self) -> None:
        self.assertEqual(balance_direction("pending", "approved"), DEBIT)


class LeaveBalanceLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _build_session()
        self.db.add_all(
            [
                Employee(id=1, full_name="Ada Worker", is_active=True),
                LeaveType(id=1, name="Annual Leave", code="AL", is_active=True),
                LeaveType(id=2, name="Sick Leave", code="SL", is_active=True),
                LeaveType(id=3, name="Retired Leave", code="RL", is_active=False),
            ]
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _balance(self, year: int = 2026, leave_type_id: int = 1) -> LeaveBalance | None:
        return get_leave_balance(self.db, employee_id=1, leave_type_id=leave_type_id, year=year)

    def _new_leave(self, start: date, end: date, days: str) -> LeaveRequest:
        return LeaveRequest(
            employee_id=1,
            leave_type_id=1,
            start_date=start,
            end_date=end,
            days_requested=Decimal(days),
            status=LeaveStatus.PENDING,
        )

    def _transition(self, leave: LeaveRequest, new_status: LeaveStatus) -> LeaveRequest:
        previous = leave.status
        leave.status = new_status
        return save_leave_request(self.db, leave, previous_status=previous)

    def test_balance_row_is_created_once_for_two_requests(self) -> None:
        save_leave_request(self.db, self._new_leave(date(2026, 3, 2), date(2026, 3, 3), "2"), previous_status=None)
        save_leave_request(self.db, self._new_leave(date(2026, 7, 6), date(2026, 7, 8), "3"), previous_status=None)

        rows = self.db.scalars(select(LeaveBalance)).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].year, 2026)
        self.assertEqual(rows[0].accrued_balance, Decimal("20"))
        self.assertEqual(rows[0].current_balance, Decimal("20"))
        self.assertEqual(rows[0].used_balance, Decimal("0"))

    def test_ensure_leave_balance_is_idempotent(self) -> None:
        ensure_leave_balance(self.db, employee_id=1, leave_type_id=1, year=2026)
        ensure_leave_balance(self.db, employee_id=1, leave_type_id=1, year=2026, entitlement_days=99)
        self.db.commit()

        balance = self._balance()
        assert balance is not None
        self.assertEqual(balance.accrued_balance, Decimal("20"))
        self.assertEqual(self.db.scalars(select(LeaveBalance)).all(), [balance])

    def test_approval_debits_exactly_once(self) -> None:
        leave = save_leave_request(
            self.db,
            self._new_leave(date(2026, 3, 2), date(2026, 3, 4), "3"),
            previous_status=None,
        )
        self._transition(leave, LeaveStatus.APPROVED)
        self._transition(leave, LeaveStatus.APPROVED)

        balance = self._balance()
        assert balance is not None
        self.assertEqual(balance.used_balance, Decimal("3"))
        self.assertEqual(balance.current_balance, Decimal("17"))
        self.assertEqual(balance.accrued_balance, Decimal("20"))
        self.assertIsNotNone(balance.updated_at)

    def test_rejection_after_approval_restores_debited_days(self) -> None:
        leave = save_leave_request(
            self.db,
            self._new_leave(date(2026, 3, 2), date(2026, 3, 3), "1.5"),
            previous_status=None,
        )
        self._transition(leave, LeaveStatus.APPROVED)
        self._transition(leave, LeaveStatus.REJECTED)

        balance = self._balance()
        assert balance is not None
        self.assertEqual(balance.used_balance, Decimal("0"))
        self.assertEqual(balance.current_balance, Decimal("20"))

    def test_pending_rejection_does_not_touch_balance(self) -> None:
        leave = save_leave_request(
            self.db,
            self._new_leave(date(2026, 3, 2), date(2026, 3, 3), "2"),
            previous_status=None,
        )
        self._transition(leave, LeaveStatus.REJECTED)

        balance = self._balance()
        assert balance is not None
        self.assertEqual(balance.current_balance, Decimal("20"))

    def test_cancel_edge_alone_does_not_credit(self) -> None:
        leave = save_leave_request(
            self.db,
            self._new_leave(date(2026, 3, 2), date(2026, 3, 3), "2"),
            previous_status=None,
        )
        self._transition(leave, LeaveStatus.APPROVED)
        self._transition(leave, LeaveStatus.CANCELLED)

        balance = self._balance()
        assert balance is not None
        self.assertEqual(balance.used_balance, Decimal("2"))
        self.assertEqual(balance.current_balance, Decimal("18"))

    def test_restore_on_cancel_credits_approved_days(self) -> None:
        leave = save_leave_request(
            self.db,
            self._new_leave(date(2026, 3, 2), date(2026, 3, 4), "3"),
            previous_status=None,
        )
        self._transition(leave, LeaveStatus.APPROVED)

        leave.status = LeaveStatus.CANCELLED
        save_leave_request(self.db, leave, previous_status=LeaveStatus.APPROVED, restore_balance=True)

        balance = self._balance()
        assert balance is not None
        self.assertEqual(balance.used_balance, Decimal("0"))
        self.assertEqual(balance.current_balance, Decimal("20"))

    def test_restore_with_missing_row_is_dropped_with_warning(self) -> None:
        leave = self._new_leave(date(2026, 3, 2), date(2026, 3, 3), "2")
        leave.status = LeaveStatus.CANCELLED
        self.db.add(leave)
        self.db.flush()

        with (
            patch("app.services.leave_balances.ensure_leave_balance", return_value=None),
            self.assertLogs("app.leave_balances", level="WARNING") as logs,
        ):
            restored = restore_cancelled_leave(self.db, leave)

        self.assertIsNone(restored)
        self.assertTrue(any("leave_balance_row_missing" in line for line in logs.output))

    def test_missing_balance_row_drops_adjustment_with_warning(self) -> None:
        leave = self._new_leave(date(2026, 3, 2), date(2026, 3, 3), "2")
        leave.status = LeaveStatus.APPROVED
        self.db.add(leave)
        self.db.flush()

        with (
            patch("app.services.leave_balances.ensure_leave_balance", return_value=None),
            self.assertLogs("app.leave_balances", level="WARNING") as logs,
        ):
            applied = apply_leave_balance_transition(self.db, leave, previous_status=LeaveStatus.PENDING)

        self.assertIsNone(applied)
        self.assertIsNone(self._balance())
        self.assertTrue(any("leave_balance_row_missing" in line for line in logs.output))

    def test_reversal_after_start_date_moves_year_targets_new_year_row(self) -> None:
        leave = save_leave_request(
            self.db,
            self._new_leave(date(2026, 12, 28), date(2026, 12, 30), "3"),
            previous_status=None,
        )
        self._transition(leave, LeaveStatus.APPROVED)

        leave.start_date = date(2027, 1, 4)
        leave.end_date = date(2027, 1, 6)
        self._transition(leave, LeaveStatus.REJECTED)

        debited_year = self._balance(2026)
        credited_year = self._balance(2027)
        assert debited_year is not None and credited_year is not None
        self.assertEqual(debited_year.used_balance, Decimal("3"))
        self.assertEqual(debited_year.current_balance, Decimal("17"))
        self.assertEqual(credited_year.used_balance, Decimal("-3"))
        self.assertEqual(credited_year.current_balance, Decimal("23"))

    def test_list_leave_balances_seeds_active_types(self) -> None:
        balances = list_leave_balances(self.db, employee_id=1, year=2026)

        self.assertEqual([item.leave_type_id for item in balances], [1, 2])
        self.assertTrue(all(item.current_balance == Decimal("20") for item in balances))


if __name__ == "__main__":
    unittest.main()
