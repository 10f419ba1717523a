"""
Daily opening balances: upsert, validation and carry-forward.
"""

from datetime import date

import pytest

from repairdesk.extensions import db
from repairdesk.models import DailyOpeningBalance, PaymentMethod
from repairdesk.services import opening_balance_service
from repairdesk.validation import NotFoundError, ValidationError


DAY = date(2026, 1, 10)


class TestSetOpeningBalance:

    def test_upsert_keeps_one_row(self, db_session, company_a, branch_a1, cash_method):
        opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, cash_method.id, DAY, 150_000)
        row = opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, cash_method.id, DAY, 200_000)

        assert row.opening_amount_cents == 200_000
        assert db.session.query(DailyOpeningBalance).count() == 1

    def test_listing_is_per_branch_day(self, db_session, company_a, branch_a1, branch_a2, cash_method, upi_method):
        opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, cash_method.id, DAY, 200_000)
        opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, upi_method.id, DAY, 0)
        opening_balance_service.set_opening_balance(company_a.id, branch_a2.id, cash_method.id, DAY, 90_000)

        rows = opening_balance_service.get_opening_balances(company_a.id, branch_a1.id, DAY)
        assert [(r.payment_method_id, r.opening_amount_cents) for r in rows] == [
            (cash_method.id, 200_000),
            (upi_method.id, 0),
        ]
        assert rows[0].to_dict()["payment_method_name"] == "Cash"

    def test_negative_rejected(self, db_session, company_a, branch_a1, cash_method):
        with pytest.raises(ValidationError):
            opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, cash_method.id, DAY, -1)

    def test_method_of_other_company_not_found(self, db_session, company_a, company_b, branch_a1):
        foreign = PaymentMethod(company_id=company_b.id, name="Cash", is_cash=True)
        db_session.add(foreign)
        db_session.commit()

        with pytest.raises(NotFoundError):
            opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, foreign.id, DAY, 100)

    def test_branch_of_other_company_not_found(self, db_session, company_a, branch_b1, cash_method):
        with pytest.raises(NotFoundError):
            opening_balance_service.set_opening_balance(company_a.id, branch_b1.id, cash_method.id, DAY, 100)


class TestClosingCarryForward:

    def test_closing_opens_next_day(self, db_session, company_a, branch_a1, cash_method):
        today, tomorrow = opening_balance_service.set_closing_balance_and_carry_forward(
            company_a.id, branch_a1.id, cash_method.id, DAY, 1_400_000
        )

        assert today.balance_date == DAY
        assert today.closing_amount_cents == 1_400_000
        assert tomorrow.balance_date == date(2026, 1, 11)
        assert tomorrow.opening_amount_cents == 1_400_000

    def test_existing_next_day_row_is_overwritten(self, db_session, company_a, branch_a1, cash_method):
        opening_balance_service.set_opening_balance(
            company_a.id, branch_a1.id, cash_method.id, date(2026, 1, 11), 5_000
        )
        opening_balance_service.set_closing_balance_and_carry_forward(
            company_a.id, branch_a1.id, cash_method.id, DAY, 1_400_000
        )

        rows = opening_balance_service.get_opening_balances(company_a.id, branch_a1.id, date(2026, 1, 11))
        assert [r.opening_amount_cents for r in rows] == [1_400_000]
