# Overview: Read-side adapters over the collections settlement totals are computed from.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Protocol

from ..extensions import db
from ..models import (
    Branch,
    DailyOpeningBalance,
    Expense,
    ExpensePayment,
    PaymentEntry,
    PaymentMethod,
    ServiceTicket,
)


@dataclass(frozen=True)
class CollectedPayment:
    payment_method_id: int
    amount_cents: int


@dataclass(frozen=True)
class IssuedRefund:
    refund_payment_method_id: Optional[int]
    refund_amount_cents: int


@dataclass(frozen=True)
class ExpensePaymentLine:
    payment_method_id: int
    amount_cents: int


@dataclass(frozen=True)
class OpeningBalance:
    payment_method_id: int
    opening_amount_cents: int


@dataclass(frozen=True)
class PaymentMethodRef:
    id: int
    name: str
    is_cash: bool


class PaymentFeed(Protocol):
    def payments_collected(
        self, company_id: int, branch_id: int, start: datetime, end: datetime
    ) -> Iterable[CollectedPayment]: ...


class RefundFeed(Protocol):
    def refunds_issued(
        self, company_id: int, branch_id: int, start: datetime, end: datetime
    ) -> Iterable[IssuedRefund]: ...


class ExpenseFeed(Protocol):
    def expense_payments(
        self, company_id: int, branch_id: int, start: datetime, end: datetime
    ) -> Iterable[ExpensePaymentLine]: ...


class OpeningBalanceProvider(Protocol):
    def opening_balances(self, company_id: int, branch_id: int, day: date) -> Iterable[OpeningBalance]: ...


class PaymentMethodDirectory(Protocol):
    def active_payment_methods(self, company_id: int) -> Iterable[PaymentMethodRef]: ...


class BranchDirectory(Protocol):
    def branch_code(self, branch_id: int) -> Optional[str]: ...


@dataclass(frozen=True)
class SettlementSources:
    """One implementation of every capability the totals calculator reads from."""
    payments: PaymentFeed
    refunds: RefundFeed
    expenses: ExpenseFeed
    opening_balances: OpeningBalanceProvider
    payment_methods: PaymentMethodDirectory
    branches: BranchDirectory


class SqlPaymentFeed:
    """Payments joined through their ticket for branch scoping; both window bounds inclusive."""

    def payments_collected(self, company_id, branch_id, start, end):
        rows = (
            db.session.query(PaymentEntry.payment_method_id, PaymentEntry.amount_cents)
            .join(ServiceTicket, ServiceTicket.id == PaymentEntry.service_id)
            .filter(
                PaymentEntry.company_id == company_id,
                ServiceTicket.branch_id == branch_id,
                PaymentEntry.payment_date >= start,
                PaymentEntry.payment_date <= end,
            )
            .order_by(PaymentEntry.id.asc())
            .all()
        )
        return [CollectedPayment(method_id, amount) for method_id, amount in rows]


class SqlRefundFeed:
    def refunds_issued(self, company_id, branch_id, start, end):
        rows = (
            db.session.query(ServiceTicket.refund_payment_method_id, ServiceTicket.refund_amount_cents)
            .filter(
                ServiceTicket.company_id == company_id,
                ServiceTicket.branch_id == branch_id,
                ServiceTicket.refund_amount_cents.isnot(None),
                ServiceTicket.refunded_at >= start,
                ServiceTicket.refunded_at <= end,
            )
            .order_by(ServiceTicket.id.asc())
            .all()
        )
        return [IssuedRefund(method_id, amount) for method_id, amount in rows]


class SqlExpenseFeed:
    """Expenses exploded to their per-method payment lines."""

    def expense_payments(self, company_id, branch_id, start, end):
        rows = (
            db.session.query(ExpensePayment.payment_method_id, ExpensePayment.amount_cents)
            .join(Expense, Expense.id == ExpensePayment.expense_id)
            .filter(
                Expense.company_id == company_id,
                Expense.branch_id == branch_id,
                Expense.expense_date >= start,
                Expense.expense_date <= end,
            )
            .order_by(ExpensePayment.id.asc())
            .all()
        )
        return [ExpensePaymentLine(method_id, amount) for method_id, amount in rows]


class SqlOpeningBalanceProvider:
    def opening_balances(self, company_id, branch_id, day):
        rows = (
            db.session.query(DailyOpeningBalance.payment_method_id, DailyOpeningBalance.opening_amount_cents)
            .filter(
                DailyOpeningBalance.company_id == company_id,
                DailyOpeningBalance.branch_id == branch_id,
                DailyOpeningBalance.balance_date == day,
            )
            .all()
        )
        return [OpeningBalance(method_id, amount or 0) for method_id, amount in rows]


class SqlPaymentMethodDirectory:
    def active_payment_methods(self, company_id):
        rows = (
            db.session.query(PaymentMethod)
            .filter(PaymentMethod.company_id == company_id, PaymentMethod.is_active.is_(True))
            .order_by(PaymentMethod.id.asc())
            .all()
        )
        return [PaymentMethodRef(pm.id, pm.name, bool(pm.is_cash)) for pm in rows]


class SqlBranchDirectory:
    def branch_code(self, branch_id):
        branch = db.session.get(Branch, branch_id)
        return branch.code if branch else None


def sql_sources() -> SettlementSources:
    """Sources backed by the application database."""
    return SettlementSources(
        payments=SqlPaymentFeed(),
        refunds=SqlRefundFeed(),
        expenses=SqlExpenseFeed(),
        opening_balances=SqlOpeningBalanceProvider(),
        payment_methods=SqlPaymentMethodDirectory(),
        branches=SqlBranchDirectory(),
    )
