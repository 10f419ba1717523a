# Overview: Settlement totals calculator; per-method breakdown of one branch day from the source feeds.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ..time_utils import day_bounds
from .settlement_sources import SettlementSources


class TotalsFetchError(Exception):
    """A source feed failed; the whole computation is discarded."""


@dataclass(frozen=True)
class MethodTotals:
    payment_method_id: int
    payment_method_name: str
    is_cash: bool
    opening_balance_cents: int
    collected_amount_cents: int
    refunded_amount_cents: int
    expense_amount_cents: int
    transaction_count: int

    @property
    def closing_balance_cents(self) -> int:
        return (
            self.opening_balance_cents
            + self.collected_amount_cents
            - self.refunded_amount_cents
            - self.expense_amount_cents
        )

    def to_dict(self) -> dict:
        return {
            "payment_method_id": self.payment_method_id,
            "payment_method_name": self.payment_method_name,
            "is_cash": self.is_cash,
            "opening_balance_cents": self.opening_balance_cents,
            "collected_amount_cents": self.collected_amount_cents,
            "refunded_amount_cents": self.refunded_amount_cents,
            "expense_amount_cents": self.expense_amount_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "transaction_count": self.transaction_count,
        }


@dataclass(frozen=True)
class UnattributedTotals:
    """Amounts that could not be attributed to an active payment method."""
    collected_cents: int = 0
    refunds_cents: int = 0
    expenses_cents: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.collected_cents or self.refunds_cents or self.expenses_cents)


@dataclass(frozen=True)
class SettlementTotals:
    method_totals: list[MethodTotals]
    total_collected_cents: int
    total_refunds_cents: int
    total_expenses_cents: int
    unattributed: UnattributedTotals = field(default_factory=UnattributedTotals)

    @property
    def net_amount_cents(self) -> int:
        # Summed across every method, not just cash-type ones
        return self.total_collected_cents - self.total_refunds_cents - self.total_expenses_cents

    @property
    def cash_net_amount_cents(self) -> int:
        return sum(
            m.collected_amount_cents - m.refunded_amount_cents - m.expense_amount_cents
            for m in self.method_totals
            if m.is_cash
        )


def calculate_totals(
    company_id: int,
    branch_id: int,
    day: date,
    *,
    sources: SettlementSources,
    timezone_name: Optional[str] = None,
) -> SettlementTotals:
    """
    Compute the per-method breakdown and scalar totals for a branch day.

    The day is the window [local midnight, local 23:59:59.999999] in
    timezone_name. One row is emitted per active payment method, ordered by
    method id, even when every component is zero. Scalar totals are sums
    over the emitted rows, so they always match the breakdown.

    Refunds with no recorded method, and anything booked against a method
    that is no longer active, land in `unattributed` rather than in a row.

    Pure: reads the sources, writes nothing.

    Raises:
        TotalsFetchError: any source raised; the original is chained.
    """
    start, end = day_bounds(day, timezone_name)

    try:
        methods = sorted(sources.payment_methods.active_payment_methods(company_id), key=lambda m: m.id)
        openings = list(sources.opening_balances.opening_balances(company_id, branch_id, day))
        payments = list(sources.payments.payments_collected(company_id, branch_id, start, end))
        refunds = list(sources.refunds.refunds_issued(company_id, branch_id, start, end))
        expense_lines = list(sources.expenses.expense_payments(company_id, branch_id, start, end))
    except Exception as exc:
        raise TotalsFetchError(
            f"Failed to load settlement sources for branch {branch_id} on {day.isoformat()}"
        ) from exc

    active_ids = {m.id for m in methods}

    opening_by_method: dict[int, int] = {}
    for ob in openings:
        opening_by_method[ob.payment_method_id] = ob.opening_amount_cents

    collected: dict[int, int] = defaultdict(int)
    counts: dict[int, int] = defaultdict(int)
    unattributed_collected = 0
    for p in payments:
        if p.payment_method_id in active_ids:
            collected[p.payment_method_id] += p.amount_cents
            counts[p.payment_method_id] += 1
        else:
            unattributed_collected += p.amount_cents

    refunded: dict[int, int] = defaultdict(int)
    unattributed_refunds = 0
    for r in refunds:
        if r.refund_payment_method_id is not None and r.refund_payment_method_id in active_ids:
            refunded[r.refund_payment_method_id] += r.refund_amount_cents
        else:
            unattributed_refunds += r.refund_amount_cents

    expensed: dict[int, int] = defaultdict(int)
    unattributed_expenses = 0
    for line in expense_lines:
        if line.payment_method_id in active_ids:
            expensed[line.payment_method_id] += line.amount_cents
        else:
            unattributed_expenses += line.amount_cents

    rows = [
        MethodTotals(
            payment_method_id=m.id,
            payment_method_name=m.name,
            is_cash=m.is_cash,
            opening_balance_cents=opening_by_method.get(m.id, 0),
            collected_amount_cents=collected.get(m.id, 0),
            refunded_amount_cents=refunded.get(m.id, 0),
            expense_amount_cents=expensed.get(m.id, 0),
            transaction_count=counts.get(m.id, 0),
        )
        for m in methods
    ]

    return SettlementTotals(
        method_totals=rows,
        total_collected_cents=sum(r.collected_amount_cents for r in rows),
        total_refunds_cents=sum(r.refunded_amount_cents for r in rows),
        total_expenses_cents=sum(r.expense_amount_cents for r in rows),
        unattributed=UnattributedTotals(
            collected_cents=unattributed_collected,
            refunds_cents=unattributed_refunds,
            expenses_cents=unattributed_expenses,
        ),
    )
