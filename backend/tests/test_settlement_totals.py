"""
Totals calculator over in-memory sources.

The calculator is pure, so these run without a database.
"""

from datetime import date, datetime

import pytest

from repairdesk.services.settlement_sources import (
    CollectedPayment,
    ExpensePaymentLine,
    IssuedRefund,
    OpeningBalance,
    PaymentMethodRef,
    SettlementSources,
)
from repairdesk.services.settlement_totals import TotalsFetchError, calculate_totals


DAY = date(2026, 1, 10)
CASH = PaymentMethodRef(1, "Cash", True)
UPI = PaymentMethodRef(2, "UPI", False)


class FakeFeed:
    """Serves every source capability from plain lists and records the window asked for."""

    def __init__(self, methods=(CASH, UPI), openings=(), payments=(), refunds=(), expenses=()):
        self.methods = list(methods)
        self.openings = list(openings)
        self.payments = list(payments)
        self.refunds = list(refunds)
        self.expenses = list(expenses)
        self.windows = []

    def active_payment_methods(self, company_id):
        return self.methods

    def opening_balances(self, company_id, branch_id, day):
        return self.openings

    def payments_collected(self, company_id, branch_id, start, end):
        self.windows.append((start, end))
        return self.payments

    def refunds_issued(self, company_id, branch_id, start, end):
        return self.refunds

    def expense_payments(self, company_id, branch_id, start, end):
        return self.expenses

    def branch_code(self, branch_id):
        return "MG"

    def sources(self):
        return SettlementSources(
            payments=self,
            refunds=self,
            expenses=self,
            opening_balances=self,
            payment_methods=self,
            branches=self,
        )


class BrokenFeed(FakeFeed):
    def refunds_issued(self, company_id, branch_id, start, end):
        raise ConnectionError("ticket store unavailable")


def test_closing_balance_per_method():
    feed = FakeFeed(
        openings=[OpeningBalance(1, 200_000)],
        payments=[CollectedPayment(1, 1_000_000), CollectedPayment(1, 500_000), CollectedPayment(2, 80_000)],
        refunds=[IssuedRefund(2, 20_000)],
        expenses=[ExpensePaymentLine(1, 300_000)],
    )
    totals = calculate_totals(1, 1, DAY, sources=feed.sources(), timezone_name="UTC")

    cash, upi = totals.method_totals
    assert cash.payment_method_id == 1
    assert cash.closing_balance_cents == 1_400_000
    assert cash.transaction_count == 2
    assert upi.closing_balance_cents == 60_000
    assert upi.transaction_count == 1


def test_scalar_totals_match_breakdown_and_exclude_opening():
    feed = FakeFeed(
        openings=[OpeningBalance(1, 200_000), OpeningBalance(2, 50_000)],
        payments=[CollectedPayment(1, 1_500_000), CollectedPayment(2, 80_000)],
        refunds=[IssuedRefund(2, 20_000)],
        expenses=[ExpensePaymentLine(1, 300_000)],
    )
    totals = calculate_totals(1, 1, DAY, sources=feed.sources())

    assert totals.total_collected_cents == 1_580_000
    assert totals.total_refunds_cents == 20_000
    assert totals.total_expenses_cents == 300_000
    assert totals.net_amount_cents == 1_260_000
    # Cash-only subtotal leaves UPI out
    assert totals.cash_net_amount_cents == 1_200_000


def test_every_active_method_gets_a_row_even_when_idle():
    totals = calculate_totals(1, 1, DAY, sources=FakeFeed().sources())

    assert [m.payment_method_id for m in totals.method_totals] == [1, 2]
    assert all(m.closing_balance_cents == 0 for m in totals.method_totals)
    assert totals.net_amount_cents == 0
    assert totals.unattributed.is_empty


def test_rows_ordered_by_method_id():
    feed = FakeFeed(methods=[UPI, CASH])
    totals = calculate_totals(1, 1, DAY, sources=feed.sources())
    assert [m.payment_method_id for m in totals.method_totals] == [1, 2]


def test_unknown_and_inactive_methods_are_unattributed():
    feed = FakeFeed(
        methods=[CASH],
        payments=[CollectedPayment(1, 10_000), CollectedPayment(2, 5_000)],
        refunds=[IssuedRefund(None, 1_000), IssuedRefund(2, 500)],
        expenses=[ExpensePaymentLine(9, 700)],
    )
    totals = calculate_totals(1, 1, DAY, sources=feed.sources())

    assert totals.total_collected_cents == 10_000
    assert totals.total_refunds_cents == 0
    assert totals.unattributed.collected_cents == 5_000
    assert totals.unattributed.refunds_cents == 1_500
    assert totals.unattributed.expenses_cents == 700
    assert not totals.unattributed.is_empty


def test_window_follows_branch_timezone():
    feed = FakeFeed()
    calculate_totals(1, 1, DAY, sources=feed.sources(), timezone_name="Asia/Kolkata")

    start, end = feed.windows[0]
    assert start == datetime(2026, 1, 9, 18, 30)
    assert end == datetime(2026, 1, 10, 18, 29, 59, 999999)


def test_source_failure_is_wrapped():
    with pytest.raises(TotalsFetchError) as excinfo:
        calculate_totals(1, 1, DAY, sources=BrokenFeed().sources())
    assert isinstance(excinfo.value.__cause__, ConnectionError)
