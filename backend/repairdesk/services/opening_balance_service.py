# Overview: Daily opening balances per branch and payment method; explicit carry-forward of closing balances.

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashSettlement, DailyOpeningBalance, PaymentMethod
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .concurrency import run_with_retry
from .tenant_service import require_branch_in_company


def get_opening_balances(company_id: int, branch_id: int, day: date) -> list[DailyOpeningBalance]:
    require_branch_in_company(branch_id, company_id)
    return (
        db.session.query(DailyOpeningBalance)
        .filter(
            DailyOpeningBalance.company_id == company_id,
            DailyOpeningBalance.branch_id == branch_id,
            DailyOpeningBalance.balance_date == day,
        )
        .order_by(DailyOpeningBalance.payment_method_id.asc())
        .all()
    )


def _require_payment_method(company_id: int, payment_method_id: int) -> PaymentMethod:
    method = (
        db.session.query(PaymentMethod)
        .filter_by(id=payment_method_id, company_id=company_id)
        .first()
    )
    if not method:
        raise NotFoundError(f"Payment method {payment_method_id} not found")
    return method


def _upsert_row(company_id: int, branch_id: int, payment_method_id: int, day: date) -> DailyOpeningBalance:
    row = (
        db.session.query(DailyOpeningBalance)
        .filter_by(branch_id=branch_id, payment_method_id=payment_method_id, balance_date=day)
        .first()
    )
    if row is None:
        row = DailyOpeningBalance(
            company_id=company_id,
            branch_id=branch_id,
            payment_method_id=payment_method_id,
            balance_date=day,
            opening_amount_cents=0,
        )
        db.session.add(row)
    return row


def set_opening_balance(
    company_id: int,
    branch_id: int,
    payment_method_id: int,
    day: date,
    opening_amount_cents: int,
) -> DailyOpeningBalance:
    """
    Upsert the opening amount for one method on one branch day.

    Negative openings are rejected; a drawer cannot start below zero.
    """
    if opening_amount_cents < 0:
        raise ValidationError("opening_amount_cents cannot be negative")

    def _op():
        require_branch_in_company(branch_id, company_id)
        _require_payment_method(company_id, payment_method_id)
        row = _upsert_row(company_id, branch_id, payment_method_id, day)
        row.opening_amount_cents = opening_amount_cents
        row.updated_at = utcnow()
        db.session.commit()
        return row

    return run_with_retry(_op, retry_on=(IntegrityError,), backoff_base=0)


def set_closing_balance_and_carry_forward(
    company_id: int,
    branch_id: int,
    payment_method_id: int,
    day: date,
    closing_amount_cents: int,
) -> tuple[DailyOpeningBalance, DailyOpeningBalance]:
    """
    Record the day's closing amount and open the next day with the same value.

    Returns (today_row, next_day_row). Both rows are written in one commit.
    """
    def _op():
        require_branch_in_company(branch_id, company_id)
        _require_payment_method(company_id, payment_method_id)
        now = utcnow()
        today = _upsert_row(company_id, branch_id, payment_method_id, day)
        today.closing_amount_cents = closing_amount_cents
        today.updated_at = now
        tomorrow = _upsert_row(company_id, branch_id, payment_method_id, day + timedelta(days=1))
        tomorrow.opening_amount_cents = closing_amount_cents
        tomorrow.updated_at = now
        db.session.commit()
        return today, tomorrow

    return run_with_retry(_op, retry_on=(IntegrityError,), backoff_base=0)


def carry_forward_settlement(settlement: CashSettlement) -> list[DailyOpeningBalance]:
    """
    Stage next-day opening balances from every breakdown row of a settlement.

    Does not commit; the caller owns the transaction. Today's rows get the
    closing amount recorded as well.
    """
    now = utcnow()
    next_day = settlement.settlement_date + timedelta(days=1)
    written = []
    for line in settlement.methods:
        today = _upsert_row(settlement.company_id, settlement.branch_id, line.payment_method_id, settlement.settlement_date)
        today.opening_amount_cents = line.opening_balance_cents
        today.closing_amount_cents = line.closing_balance_cents
        today.updated_at = now
        tomorrow = _upsert_row(settlement.company_id, settlement.branch_id, line.payment_method_id, next_day)
        tomorrow.opening_amount_cents = line.closing_balance_cents
        tomorrow.updated_at = now
        written.append(tomorrow)
    db.session.flush()
    return written
