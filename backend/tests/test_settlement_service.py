"""
Settlement lifecycle tests.

Verifies:
- Open creates one settlement per branch day and recomputes while mutable
- Denomination count drives cash difference
- Submit / verify / reject transitions and their guards
- First transition wins; the loser sees the status it lost to
- Submitted snapshots do not move when sources change
- Concurrent creation converges on one row
- Carry-forward of closing balances into the next day
"""

from datetime import date, datetime

import pytest

from repairdesk.extensions import db
from repairdesk.models import (
    Branch,
    CashSettlement,
    CashSettlementMethod,
    DailyOpeningBalance,
    PaymentMethod,
    SecurityEvent,
    SettlementEvent,
)
from repairdesk.services import opening_balance_service, settlement_service
from repairdesk.services.settlement_service import InvalidStateTransition
from repairdesk.services.settlement_sources import SettlementSources, sql_sources
from repairdesk.services.settlement_totals import TotalsFetchError
from repairdesk.validation import ConflictError, NotFoundError, ValidationError


DAY = date(2026, 1, 10)
NOON = datetime(2026, 1, 10, 12, 0)


def _events(settlement_id):
    return [
        e.event_type
        for e in db.session.query(SettlementEvent).filter_by(settlement_id=settlement_id)
        .order_by(SettlementEvent.occurred_at, SettlementEvent.id)
        .all()
    ]


@pytest.fixture
def busy_day(db_session, company_a, branch_a1, cash_method, upi_method, ledger):
    """Opening cash 2000.00; cash takings 10000.00 + 5000.00; cash expense 3000.00."""
    opening_balance_service.set_opening_balance(company_a.id, branch_a1.id, cash_method.id, DAY, 200_000)
    ledger.payment(branch_a1, cash_method, 1_000_000, NOON)
    ledger.payment(branch_a1, cash_method, 500_000, datetime(2026, 1, 10, 15, 0))
    ledger.expense(branch_a1, [(cash_method, 300_000)], datetime(2026, 1, 10, 16, 0))
    return ledger


def _open(company, branch, user=None, day=DAY):
    return settlement_service.create_or_get_settlement(
        company.id, branch.id, day, user.id if user is not None else None
    )


def _submitted(company, branch, user):
    settlement = _open(company, branch, user)
    return settlement_service.submit_settlement(settlement.id, company.id, user.id)


# =============================================================================
# OPEN / RECOMPUTE
# =============================================================================


class TestOpenSettlement:

    def test_end_to_end_day(self, busy_day, company_a, branch_a1, cash_method, upi_method, receptionist_a1):
        settlement = _open(company_a, branch_a1, receptionist_a1)

        assert settlement.settlement_number == "SET-MG-20260110"
        assert settlement.status == "PENDING"
        assert settlement.total_collected_cents == 1_500_000
        assert settlement.total_expenses_cents == 300_000
        assert settlement.net_cash_amount_cents == 1_200_000
        assert settlement.cash_net_amount_cents == 1_200_000

        rows = {row.payment_method_id: row for row in settlement.methods}
        assert set(rows) == {cash_method.id, upi_method.id}
        assert rows[cash_method.id].opening_balance_cents == 200_000
        assert rows[cash_method.id].closing_balance_cents == 1_400_000
        assert rows[cash_method.id].transaction_count == 2
        assert rows[upi_method.id].closing_balance_cents == 0

        settlement = settlement_service.update_denominations(
            settlement.id, company_a.id, {"note_500": 23}, user_id=receptionist_a1.id
        )
        assert settlement.physical_cash_count_cents == 1_150_000
        assert settlement.cash_difference_cents == -50_000
        assert settlement.denomination.note_500_count == 23

    def test_open_twice_returns_same_row(self, busy_day, company_a, branch_a1):
        first = _open(company_a, branch_a1)
        second = _open(company_a, branch_a1)

        assert first.id == second.id
        assert db.session.query(CashSettlement).filter_by(branch_id=branch_a1.id).count() == 1

    def test_unchanged_recompute_writes_no_event(self, busy_day, company_a, branch_a1):
        settlement = _open(company_a, branch_a1)
        _open(company_a, branch_a1)
        _open(company_a, branch_a1)

        assert _events(settlement.id) == ["settlement.created"]

    def test_recompute_picks_up_late_payment_and_keeps_count(
        self, busy_day, company_a, branch_a1, cash_method
    ):
        settlement = _open(company_a, branch_a1)
        settlement_service.update_denominations(settlement.id, company_a.id, {"note_500": 24})

        busy_day.payment(branch_a1, cash_method, 100_000, datetime(2026, 1, 10, 18, 0))
        settlement = _open(company_a, branch_a1)

        assert settlement.net_cash_amount_cents == 1_300_000
        assert settlement.physical_cash_count_cents == 1_200_000
        assert settlement.cash_difference_cents == -100_000
        assert settlement.denomination.note_500_count == 24
        assert _events(settlement.id)[-1] == "settlement.recalculated"

    def test_recompute_event_records_before_and_after(self, busy_day, company_a, branch_a1, cash_method):
        settlement = _open(company_a, branch_a1)
        busy_day.payment(branch_a1, cash_method, 100_000, datetime(2026, 1, 10, 18, 0))
        _open(company_a, branch_a1)

        event = db.session.query(SettlementEvent).filter_by(
            settlement_id=settlement.id, event_type="settlement.recalculated"
        ).one()
        payload = event.to_dict()["payload"]
        assert payload["before"]["net_cash_amount_cents"] == 1_200_000
        assert payload["after"]["net_cash_amount_cents"] == 1_300_000

    def test_deactivated_method_drops_row_into_unattributed(
        self, busy_day, company_a, branch_a1, cash_method, upi_method, db_session
    ):
        busy_day.payment(branch_a1, upi_method, 40_000, NOON)
        settlement = _open(company_a, branch_a1)
        assert settlement.total_collected_cents == 1_540_000

        upi_method.is_active = False
        db_session.commit()
        settlement = _open(company_a, branch_a1)

        assert [row.payment_method_id for row in settlement.methods] == [cash_method.id]
        assert settlement.total_collected_cents == 1_500_000
        assert settlement.unattributed_collected_cents == 40_000
        assert settlement.to_dict()["unattributed"]["collected_cents"] == 40_000

    def test_refund_without_method_is_unattributed(self, busy_day, company_a, branch_a1):
        busy_day.refund(branch_a1, None, 25_000, NOON)
        settlement = _open(company_a, branch_a1)

        assert settlement.total_refunds_cents == 0
        assert settlement.unattributed_refunds_cents == 25_000

    def test_other_days_and_branches_are_excluded(
        self, busy_day, company_a, branch_a1, branch_a2, cash_method
    ):
        busy_day.payment(branch_a2, cash_method, 999_900, NOON)
        busy_day.payment(branch_a1, cash_method, 777_700, datetime(2026, 1, 11, 0, 0))
        busy_day.payment(branch_a1, cash_method, 111_100, datetime(2026, 1, 9, 23, 59, 59))

        settlement = _open(company_a, branch_a1)
        assert settlement.total_collected_cents == 1_500_000

    def test_day_boundary_uses_branch_timezone(self, db_session, company_a, cash_method, ledger):
        branch = Branch(company_id=company_a.id, name="Indiranagar", code="IN", timezone="Asia/Kolkata")
        db_session.add(branch)
        db_session.commit()

        # 23:59:59 IST on the 9th, then 00:00 IST on the 10th
        ledger.payment(branch, cash_method, 10_000, datetime(2026, 1, 9, 18, 29, 59))
        ledger.payment(branch, cash_method, 20_000, datetime(2026, 1, 9, 18, 30, 0))

        settlement = _open(company_a, branch)
        assert settlement.total_collected_cents == 20_000

    def test_missing_branch_code_uses_placeholder(self, db_session, company_a, cash_method):
        branch = Branch(company_id=company_a.id, name="Pop-up", code=None)
        db_session.add(branch)
        db_session.commit()

        assert _open(company_a, branch).settlement_number == "SET-XX-20260110"

    def test_branch_of_other_company_is_not_found(self, db_session, company_a, branch_b1):
        with pytest.raises(NotFoundError):
            _open(company_a, branch_b1)
        assert db.session.query(CashSettlement).count() == 0

    def test_cross_company_attempt_outside_request_is_not_logged(self, db_session, company_a, branch_b1):
        with pytest.raises(NotFoundError):
            _open(company_a, branch_b1)
        assert db.session.query(SecurityEvent).count() == 0

    def test_source_failure_writes_nothing(self, db_session, company_a, branch_a1, cash_method):
        class FailingRefunds:
            def refunds_issued(self, company_id, branch_id, start, end):
                raise ConnectionError("ticket store down")

        base = sql_sources()
        sources = SettlementSources(
            payments=base.payments,
            refunds=FailingRefunds(),
            expenses=base.expenses,
            opening_balances=base.opening_balances,
            payment_methods=base.payment_methods,
            branches=base.branches,
        )
        with pytest.raises(TotalsFetchError):
            settlement_service.create_or_get_settlement(company_a.id, branch_a1.id, DAY, None, sources=sources)
        assert db.session.query(CashSettlement).count() == 0


# =============================================================================
# CONCURRENT CREATION
# =============================================================================


class TestConcurrentCreation:

    def test_losing_insert_rereads_winner(self, busy_day, company_a, branch_a1, monkeypatch):
        winner = _open(company_a, branch_a1)

        real_find = settlement_service._find_settlement
        calls = []

        def racing_find(company_id, branch_id, day):
            calls.append(day)
            if len(calls) == 1:
                # Looked before the winner committed
                return None
            return real_find(company_id, branch_id, day)

        monkeypatch.setattr(settlement_service, "_find_settlement", racing_find)
        settlement = _open(company_a, branch_a1)

        assert settlement.id == winner.id
        assert len(calls) == 2
        assert db.session.query(CashSettlement).count() == 1

    def test_persistent_conflict_raises(self, busy_day, company_a, branch_a1, monkeypatch):
        _open(company_a, branch_a1)
        monkeypatch.setattr(settlement_service, "_find_settlement", lambda *args: None)

        with pytest.raises(ConflictError):
            _open(company_a, branch_a1)
        assert db.session.query(CashSettlement).count() == 1


def _competing_breakdown_row(settlement_id, payment_method_id):
    """Breakdown row written by another open of the same settlement."""
    db.session.execute(
        CashSettlementMethod.__table__.insert().values(
            settlement_id=settlement_id,
            payment_method_id=payment_method_id,
        )
    )


class TestConcurrentRecompute:
    """A payment method activated between opens; two opens race on its breakdown row."""

    def test_competing_breakdown_insert_is_reread(
        self, busy_day, company_a, branch_a1, cash_method, upi_method, monkeypatch
    ):
        settlement = _open(company_a, branch_a1)
        method = PaymentMethod(company_id=company_a.id, name="Card", is_cash=False)
        db.session.add(method)
        db.session.commit()
        card_id = method.id

        real_sync = settlement_service._sync_method_rows
        calls = []

        def racing_sync(target, totals):
            calls.append(target.id)
            real_sync(target, totals)
            if len(calls) == 1:
                _competing_breakdown_row(target.id, card_id)

        monkeypatch.setattr(settlement_service, "_sync_method_rows", racing_sync)
        reopened = _open(company_a, branch_a1)

        assert reopened.id == settlement.id
        assert len(calls) == 2
        rows = (
            db.session.query(CashSettlementMethod)
            .filter_by(settlement_id=settlement.id)
            .order_by(CashSettlementMethod.payment_method_id)
            .all()
        )
        assert [row.payment_method_id for row in rows] == sorted([cash_method.id, upi_method.id, card_id])
        assert reopened.net_cash_amount_cents == 1_200_000

    def test_breakdown_that_never_settles_is_a_conflict(self, busy_day, company_a, branch_a1, monkeypatch):
        settlement = _open(company_a, branch_a1)
        method = PaymentMethod(company_id=company_a.id, name="Card", is_cash=False)
        db.session.add(method)
        db.session.commit()
        card_id = method.id

        real_sync = settlement_service._sync_method_rows

        def always_racing_sync(target, totals):
            real_sync(target, totals)
            _competing_breakdown_row(target.id, card_id)

        monkeypatch.setattr(settlement_service, "_sync_method_rows", always_racing_sync)

        with pytest.raises(ConflictError):
            _open(company_a, branch_a1)
        assert db.session.query(CashSettlementMethod).filter_by(settlement_id=settlement.id).count() == 2


# =============================================================================
# DENOMINATIONS / NOTES
# =============================================================================


class TestDenominationsAndNotes:

    def test_recount_replaces_previous_count(self, busy_day, company_a, branch_a1):
        settlement = _open(company_a, branch_a1)
        settlement_service.update_denominations(settlement.id, company_a.id, {"note_500": 23})
        settlement = settlement_service.update_denominations(
            settlement.id, company_a.id, {"note_2000": 6}
        )

        assert settlement.physical_cash_count_cents == 1_200_000
        assert settlement.cash_difference_cents == 0
        assert settlement.denomination.note_500_count == 0

    def test_invalid_counts_rejected_before_state_check(self, db_session, company_a, branch_a1, receptionist_a1):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        with pytest.raises(ValidationError):
            settlement_service.update_denominations(settlement.id, company_a.id, {"note_500": -1})

    def test_counts_locked_after_submit(self, busy_day, company_a, branch_a1, receptionist_a1):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)

        with pytest.raises(InvalidStateTransition) as excinfo:
            settlement_service.update_denominations(settlement.id, company_a.id, {"note_500": 1})
        assert excinfo.value.current_status == "SUBMITTED"
        assert "has already been submitted and cannot be edited" in str(excinfo.value)

    def test_notes_saved_and_locked_after_submit(self, busy_day, company_a, branch_a1, receptionist_a1):
        settlement = _open(company_a, branch_a1)
        settlement = settlement_service.update_notes(settlement.id, company_a.id, "Drawer jammed at 4pm")
        assert settlement.notes == "Drawer jammed at 4pm"

        settlement_service.submit_settlement(settlement.id, company_a.id, receptionist_a1.id)
        with pytest.raises(InvalidStateTransition):
            settlement_service.update_notes(settlement.id, company_a.id, "late edit")

    def test_unknown_settlement_not_found(self, db_session, company_a):
        with pytest.raises(NotFoundError):
            settlement_service.update_denominations(12345, company_a.id, {"note_500": 1})

    def test_other_company_settlement_not_found(self, busy_day, company_a, company_b, branch_a1):
        settlement = _open(company_a, branch_a1)
        with pytest.raises(NotFoundError):
            settlement_service.get_settlement(settlement.id, company_b.id)


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:

    def test_submit_verify(self, busy_day, company_a, branch_a1, receptionist_a1, manager_a):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        assert settlement.status == "SUBMITTED"
        assert settlement.settled_by_user_id == receptionist_a1.id
        assert settlement.settled_at is not None

        settlement = settlement_service.verify_settlement(
            settlement.id, company_a.id, manager_a.id, notes="Counted twice"
        )
        assert settlement.status == "VERIFIED"
        assert settlement.verified_by_user_id == manager_a.id
        assert settlement.verification_notes == "Counted twice"
        assert _events(settlement.id) == [
            "settlement.created",
            "settlement.submitted",
            "settlement.verified",
        ]

    def test_submit_keeps_the_user_who_opened_it(self, busy_day, company_a, branch_a1, receptionist_a1, manager_a):
        settlement = _open(company_a, branch_a1, receptionist_a1)

        settlement = settlement_service.submit_settlement(settlement.id, company_a.id, manager_a.id)

        assert settlement.status == "SUBMITTED"
        assert settlement.settled_by_user_id == receptionist_a1.id
        submitted = (
            db.session.query(SettlementEvent)
            .filter_by(settlement_id=settlement.id, event_type="settlement.submitted")
            .one()
        )
        assert submitted.actor_user_id == manager_a.id

    def test_reject_then_fix_and_resubmit(self, busy_day, company_a, branch_a1, receptionist_a1, manager_a):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        settlement = settlement_service.reject_settlement(
            settlement.id, company_a.id, manager_a.id, "Count is short by 500"
        )
        assert settlement.status == "REJECTED"
        assert settlement.rejection_reason == "Count is short by 500"

        settlement_service.update_denominations(settlement.id, company_a.id, {"note_2000": 6})
        settlement = settlement_service.submit_settlement(settlement.id, company_a.id, receptionist_a1.id)
        assert settlement.status == "SUBMITTED"
        assert settlement.cash_difference_cents == 0

    def test_reject_requires_reason(self, busy_day, company_a, branch_a1, receptionist_a1, manager_a):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        for reason in (None, "", "   "):
            with pytest.raises(ValidationError):
                settlement_service.reject_settlement(settlement.id, company_a.id, manager_a.id, reason)
        assert settlement_service.get_settlement(settlement.id, company_a.id).status == "SUBMITTED"

    def test_cannot_verify_pending(self, busy_day, company_a, branch_a1, manager_a):
        settlement = _open(company_a, branch_a1)
        with pytest.raises(InvalidStateTransition) as excinfo:
            settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)
        assert excinfo.value.current_status == "PENDING"
        assert excinfo.value.action == "verify"

    def test_cannot_submit_twice(self, busy_day, company_a, branch_a1, receptionist_a1):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        with pytest.raises(InvalidStateTransition):
            settlement_service.submit_settlement(settlement.id, company_a.id, receptionist_a1.id)

    def test_first_transition_wins(self, busy_day, company_a, branch_a1, receptionist_a1, manager_a):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)

        with pytest.raises(InvalidStateTransition) as excinfo:
            settlement_service.reject_settlement(settlement.id, company_a.id, manager_a.id, "too late")

        err = excinfo.value
        assert err.current_status == "VERIFIED"
        assert err.to_dict()["action"] == "reject"
        assert "has already been verified" in str(err)
        stored = settlement_service.get_settlement(settlement.id, company_a.id)
        assert stored.status == "VERIFIED"
        assert stored.rejection_reason is None

    def test_verified_is_terminal(self, busy_day, company_a, branch_a1, receptionist_a1, manager_a):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)

        with pytest.raises(InvalidStateTransition):
            settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)
        with pytest.raises(InvalidStateTransition):
            settlement_service.submit_settlement(settlement.id, company_a.id, receptionist_a1.id)

    def test_submitted_snapshot_is_frozen(self, busy_day, company_a, branch_a1, cash_method, receptionist_a1):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)

        busy_day.payment(branch_a1, cash_method, 250_000, datetime(2026, 1, 10, 19, 0))
        reopened = _open(company_a, branch_a1, receptionist_a1)

        assert reopened.id == settlement.id
        assert reopened.status == "SUBMITTED"
        assert reopened.total_collected_cents == 1_500_000
        assert "settlement.recalculated" not in _events(settlement.id)


# =============================================================================
# CARRY-FORWARD
# =============================================================================


class TestCarryForward:

    def test_verified_closing_becomes_next_opening(
        self, busy_day, company_a, branch_a1, cash_method, upi_method, receptionist_a1, manager_a
    ):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)

        rows = settlement_service.carry_forward_closing_balances(settlement.id, company_a.id, manager_a.id)

        openings = {row.payment_method_id: row.opening_amount_cents for row in rows}
        assert openings == {cash_method.id: 1_400_000, upi_method.id: 0}

        today = db.session.query(DailyOpeningBalance).filter_by(
            branch_id=branch_a1.id, payment_method_id=cash_method.id, balance_date=DAY
        ).one()
        assert today.closing_amount_cents == 1_400_000

        next_day = _open(company_a, branch_a1, day=date(2026, 1, 11))
        cash_row = next(row for row in next_day.methods if row.payment_method_id == cash_method.id)
        assert cash_row.opening_balance_cents == 1_400_000
        assert "settlement.carried_forward" in _events(settlement.id)

    def test_rerun_overwrites_with_same_values(
        self, busy_day, company_a, branch_a1, cash_method, receptionist_a1, manager_a
    ):
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)
        settlement_service.carry_forward_closing_balances(settlement.id, company_a.id, manager_a.id)
        settlement_service.carry_forward_closing_balances(settlement.id, company_a.id, manager_a.id)

        assert db.session.query(DailyOpeningBalance).filter_by(
            branch_id=branch_a1.id, payment_method_id=cash_method.id, balance_date=date(2026, 1, 11)
        ).count() == 1

    def test_only_verified_settlements_carry_forward(self, busy_day, company_a, branch_a1, manager_a):
        settlement = _open(company_a, branch_a1)
        with pytest.raises(InvalidStateTransition) as excinfo:
            settlement_service.carry_forward_closing_balances(settlement.id, company_a.id, manager_a.id)
        assert excinfo.value.action == "carry_forward"

    def test_carry_forward_on_verify_when_enabled(
        self, app, busy_day, company_a, branch_a1, cash_method, receptionist_a1, manager_a, monkeypatch
    ):
        monkeypatch.setitem(app.config, "SETTLEMENT_CARRY_FORWARD_ON_VERIFY", True)
        settlement = _submitted(company_a, branch_a1, receptionist_a1)
        settlement_service.verify_settlement(settlement.id, company_a.id, manager_a.id)

        next_opening = db.session.query(DailyOpeningBalance).filter_by(
            branch_id=branch_a1.id, payment_method_id=cash_method.id, balance_date=date(2026, 1, 11)
        ).one()
        assert next_opening.opening_amount_cents == 1_400_000


# =============================================================================
# LISTING
# =============================================================================


class TestListSettlements:

    def test_newest_first_with_pagination(self, busy_day, company_a, branch_a1, receptionist_a1):
        for day in (date(2026, 1, 8), date(2026, 1, 9), DAY):
            _open(company_a, branch_a1, day=day)

        result = settlement_service.list_settlements(company_a.id, branch_id=branch_a1.id, limit=2)
        assert [s["settlement_date"] for s in result["settlements"]] == ["2026-01-10", "2026-01-09"]
        assert result["pagination"] == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}
        assert "methods" not in result["settlements"][0]

    def test_filters_by_status_and_range(self, busy_day, company_a, branch_a1, receptionist_a1):
        _open(company_a, branch_a1, day=date(2026, 1, 9))
        _submitted(company_a, branch_a1, receptionist_a1)

        submitted = settlement_service.list_settlements(company_a.id, status="SUBMITTED")
        assert [s["settlement_date"] for s in submitted["settlements"]] == ["2026-01-10"]

        ranged = settlement_service.list_settlements(
            company_a.id, start_date=date(2026, 1, 9), end_date=date(2026, 1, 9)
        )
        assert ranged["pagination"]["total"] == 1

    def test_scoped_to_company(self, busy_day, company_a, company_b, branch_a1):
        _open(company_a, branch_a1)
        assert settlement_service.list_settlements(company_b.id)["pagination"]["total"] == 0

    def test_bad_filters(self, db_session, company_a):
        with pytest.raises(ValidationError):
            settlement_service.list_settlements(company_a.id, status="DONE")
        with pytest.raises(ValidationError):
            settlement_service.list_settlements(company_a.id, start_date=DAY, end_date=date(2026, 1, 1))
