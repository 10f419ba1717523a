# backend/repairdesk/services/settlement_service.py
"""
Daily cash settlement lifecycle.

WHY: Each branch closes its drawer once per business day. The settlement
snapshots what the books say the branch should hold (per payment method),
records what was physically counted, and carries the difference through a
submit -> verify/reject review.

LIFECYCLE:
1. PENDING: Created on first open; totals recomputed on every open
2. SUBMITTED: Frozen snapshot awaiting review
3. VERIFIED: Accepted by a manager (terminal)
4. REJECTED: Sent back with a reason; editable and resubmittable

CONCURRENCY:
- One settlement per (branch, day), backed by a unique constraint. A losing
  concurrent insert rolls back and re-reads the winner's row.
- Every status change is a single conditional UPDATE on status
  (compare-and-swap). The first transition wins; the loser gets
  InvalidStateTransition with the status it lost to.
- Recompute and denomination entry both rewrite cash_difference. Each does
  it in SQL from the row's current columns, but the two are not serialized
  against each other; last writer wins.
"""
from __future__ import annotations

import math
from datetime import date

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Branch, CashDenomination, CashSettlement, CashSettlementMethod
from ..time_utils import business_date, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .audit_service import (
    EVENT_CARRIED_FORWARD,
    EVENT_CREATED,
    EVENT_DENOMINATIONS_UPDATED,
    EVENT_NOTES_UPDATED,
    EVENT_RECALCULATED,
    EVENT_REJECTED,
    EVENT_SUBMITTED,
    EVENT_VERIFIED,
    append_settlement_event,
    list_settlement_events,
)
from .concurrency import lock_for_update, run_with_retry
from .denominations import calculate_denomination_total, validate_denomination_counts
from .opening_balance_service import carry_forward_settlement
from .settlement_numbering import generate_settlement_number
from .settlement_sources import SettlementSources, sql_sources
from .settlement_totals import SettlementTotals, calculate_totals
from .tenant_service import require_branch_in_company


# Settlement status constants
SETTLEMENT_STATUS_PENDING = "PENDING"
SETTLEMENT_STATUS_SUBMITTED = "SUBMITTED"
SETTLEMENT_STATUS_VERIFIED = "VERIFIED"
SETTLEMENT_STATUS_REJECTED = "REJECTED"

SETTLEMENT_STATUSES = (
    SETTLEMENT_STATUS_PENDING,
    SETTLEMENT_STATUS_SUBMITTED,
    SETTLEMENT_STATUS_VERIFIED,
    SETTLEMENT_STATUS_REJECTED,
)

# Statuses in which totals, denominations and notes may still change
MUTABLE_STATUSES = frozenset({SETTLEMENT_STATUS_PENDING, SETTLEMENT_STATUS_REJECTED})

ACTION_EDIT = "edit"
ACTION_SUBMIT = "submit"
ACTION_VERIFY = "verify"
ACTION_REJECT = "reject"
ACTION_CARRY_FORWARD = "carry_forward"

_ACTION_VERBS = {
    ACTION_EDIT: "edited",
    ACTION_SUBMIT: "submitted",
    ACTION_VERIFY: "verified",
    ACTION_REJECT: "rejected",
    ACTION_CARRY_FORWARD: "carried forward",
}

_STATUS_PHRASES = {
    SETTLEMENT_STATUS_PENDING: "is still pending",
    SETTLEMENT_STATUS_SUBMITTED: "has already been submitted",
    SETTLEMENT_STATUS_VERIFIED: "has already been verified",
    SETTLEMENT_STATUS_REJECTED: "has been rejected",
}

DEFAULT_CREATE_ATTEMPTS = 3


class InvalidStateTransition(Exception):
    """
    Operation not allowed in the settlement's current status.

    Carries the status the settlement was actually in, so callers can tell
    the user exactly why (e.g. someone else verified it first).
    """

    def __init__(self, settlement_id: int, current_status: str, action: str, message: str | None = None):
        self.settlement_id = settlement_id
        self.current_status = current_status
        self.action = action
        super().__init__(message or f"Cannot {action} settlement {settlement_id} in {current_status} status")

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "settlement_id": self.settlement_id,
            "current_status": self.current_status,
            "action": self.action,
        }


def _invalid_transition(settlement: CashSettlement, action: str) -> InvalidStateTransition:
    phrase = _STATUS_PHRASES.get(settlement.status, f"is {settlement.status}")
    message = f"Settlement {settlement.settlement_number} {phrase} and cannot be {_ACTION_VERBS[action]}"
    return InvalidStateTransition(settlement.id, settlement.status, action, message)


def _branch_timezone(branch: Branch) -> str | None:
    return branch.timezone or current_app.config.get("DEFAULT_TIMEZONE")


def _find_settlement(company_id: int, branch_id: int, day: date) -> CashSettlement | None:
    return (
        db.session.query(CashSettlement)
        .filter_by(company_id=company_id, branch_id=branch_id, settlement_date=day)
        .first()
    )


def _get_scoped(settlement_id: int, company_id: int) -> CashSettlement:
    settlement = (
        db.session.query(CashSettlement)
        .filter_by(id=settlement_id, company_id=company_id)
        .first()
    )
    if not settlement:
        raise NotFoundError(f"Settlement {settlement_id} not found")
    return settlement


def _guarded_update(settlement: CashSettlement, allowed, values: dict, action: str) -> None:
    """
    Conditional UPDATE: apply `values` only while status is in `allowed`.

    On a miss the transaction is rolled back and InvalidStateTransition is
    raised with the freshly read status.
    """
    updated = (
        db.session.query(CashSettlement)
        .filter(
            CashSettlement.id == settlement.id,
            CashSettlement.company_id == settlement.company_id,
            CashSettlement.status.in_(list(allowed)),
        )
        .update(values, synchronize_session=False)
    )
    if updated == 0:
        settlement_id, company_id = settlement.id, settlement.company_id
        db.session.rollback()
        raise _invalid_transition(_get_scoped(settlement_id, company_id), action)


def _totals_payload(totals: SettlementTotals) -> dict:
    return {
        "total_collected_cents": totals.total_collected_cents,
        "total_refunds_cents": totals.total_refunds_cents,
        "total_expenses_cents": totals.total_expenses_cents,
        "net_cash_amount_cents": totals.net_amount_cents,
        "cash_net_amount_cents": totals.cash_net_amount_cents,
        "unattributed_collected_cents": totals.unattributed.collected_cents,
        "unattributed_refunds_cents": totals.unattributed.refunds_cents,
        "unattributed_expenses_cents": totals.unattributed.expenses_cents,
        "methods": [
            [
                m.payment_method_id,
                m.opening_balance_cents,
                m.collected_amount_cents,
                m.refunded_amount_cents,
                m.expense_amount_cents,
                m.closing_balance_cents,
                m.transaction_count,
            ]
            for m in totals.method_totals
        ],
    }


def _stored_payload(settlement: CashSettlement) -> dict:
    """Same shape as _totals_payload, read from the persisted snapshot."""
    return {
        "total_collected_cents": settlement.total_collected_cents,
        "total_refunds_cents": settlement.total_refunds_cents,
        "total_expenses_cents": settlement.total_expenses_cents,
        "net_cash_amount_cents": settlement.net_cash_amount_cents,
        "cash_net_amount_cents": settlement.cash_net_amount_cents,
        "unattributed_collected_cents": settlement.unattributed_collected_cents,
        "unattributed_refunds_cents": settlement.unattributed_refunds_cents,
        "unattributed_expenses_cents": settlement.unattributed_expenses_cents,
        "methods": [
            [
                m.payment_method_id,
                m.opening_balance_cents,
                m.collected_amount_cents,
                m.refunded_amount_cents,
                m.expense_amount_cents,
                m.closing_balance_cents,
                m.transaction_count,
            ]
            for m in sorted(settlement.methods, key=lambda row: row.payment_method_id)
        ],
    }


_METHOD_FIELDS = (
    "opening_balance_cents",
    "collected_amount_cents",
    "refunded_amount_cents",
    "expense_amount_cents",
    "closing_balance_cents",
    "transaction_count",
)


def _sync_method_rows(settlement: CashSettlement, totals: SettlementTotals) -> None:
    """
    Make settlement.methods match the computed breakdown.

    Rows are updated in place by payment method so the
    (settlement_id, payment_method_id) constraint never sees a delete and
    re-insert of the same key in one flush.
    """
    existing = {row.payment_method_id: row for row in settlement.methods}
    seen = set()
    for m in totals.method_totals:
        row = existing.get(m.payment_method_id)
        if row is None:
            row = CashSettlementMethod(payment_method_id=m.payment_method_id)
            settlement.methods.append(row)
        for field in _METHOD_FIELDS:
            setattr(row, field, getattr(m, field))
        seen.add(m.payment_method_id)
    for payment_method_id, row in existing.items():
        if payment_method_id not in seen:
            settlement.methods.remove(row)


def _insert_settlement(
    company_id: int,
    branch_id: int,
    day: date,
    user_id: int | None,
    totals: SettlementTotals,
    sources: SettlementSources,
) -> CashSettlement:
    now = utcnow()
    settlement = CashSettlement(
        settlement_number=generate_settlement_number(branch_id, day, branches=sources.branches),
        company_id=company_id,
        branch_id=branch_id,
        settlement_date=day,
        total_collected_cents=totals.total_collected_cents,
        total_refunds_cents=totals.total_refunds_cents,
        total_expenses_cents=totals.total_expenses_cents,
        net_cash_amount_cents=totals.net_amount_cents,
        cash_net_amount_cents=totals.cash_net_amount_cents,
        unattributed_collected_cents=totals.unattributed.collected_cents,
        unattributed_refunds_cents=totals.unattributed.refunds_cents,
        unattributed_expenses_cents=totals.unattributed.expenses_cents,
        physical_cash_count_cents=0,
        cash_difference_cents=-totals.net_amount_cents,
        status=SETTLEMENT_STATUS_PENDING,
        settled_by_user_id=user_id,
        updated_at=now,
        recalculated_at=now,
    )
    _sync_method_rows(settlement, totals)
    db.session.add(settlement)
    db.session.flush()  # unique (branch_id, settlement_date) fires here

    append_settlement_event(
        settlement,
        EVENT_CREATED,
        actor_user_id=user_id,
        to_status=SETTLEMENT_STATUS_PENDING,
        payload=_totals_payload(totals),
        occurred_at=now,
    )
    db.session.commit()
    current_app.logger.info(
        "Created settlement %s for branch %s on %s", settlement.settlement_number, branch_id, day.isoformat()
    )
    return settlement


def _recompute(
    settlement: CashSettlement,
    sources: SettlementSources,
    timezone_name: str | None,
    user_id: int | None,
) -> CashSettlement:
    """
    Refresh a mutable settlement's snapshot from the sources.

    The stored physical count is kept; cash_difference is recomputed from it
    in SQL. If the settlement was submitted in the meantime the UPDATE
    matches nothing and the frozen snapshot is returned untouched.
    """
    totals = calculate_totals(
        settlement.company_id,
        settlement.branch_id,
        settlement.settlement_date,
        sources=sources,
        timezone_name=timezone_name,
    )
    before = _stored_payload(settlement)
    after = _totals_payload(totals)
    settlement_id, company_id = settlement.id, settlement.company_id

    now = utcnow()
    net = totals.net_amount_cents
    updated = (
        db.session.query(CashSettlement)
        .filter(
            CashSettlement.id == settlement_id,
            CashSettlement.status.in_(list(MUTABLE_STATUSES)),
        )
        .update(
            {
                "total_collected_cents": totals.total_collected_cents,
                "total_refunds_cents": totals.total_refunds_cents,
                "total_expenses_cents": totals.total_expenses_cents,
                "net_cash_amount_cents": net,
                "cash_net_amount_cents": totals.cash_net_amount_cents,
                "unattributed_collected_cents": totals.unattributed.collected_cents,
                "unattributed_refunds_cents": totals.unattributed.refunds_cents,
                "unattributed_expenses_cents": totals.unattributed.expenses_cents,
                "cash_difference_cents": CashSettlement.physical_cash_count_cents - net,
                "recalculated_at": now,
                "updated_at": now,
            },
            synchronize_session=False,
        )
    )
    if updated == 0:
        db.session.rollback()
        current_app.logger.info("Settlement %s was frozen before recompute; returning snapshot", settlement_id)
        return _get_scoped(settlement_id, company_id)

    # Breakdown rows are re-read now that the UPDATE holds the settlement row
    db.session.expire(settlement, ["methods"])
    _sync_method_rows(settlement, totals)

    if before != after:
        append_settlement_event(
            settlement,
            EVENT_RECALCULATED,
            actor_user_id=user_id,
            payload={"before": before, "after": after},
            occurred_at=now,
        )
    db.session.commit()
    return _get_scoped(settlement_id, company_id)


def _recompute_with_retry(
    settlement: CashSettlement,
    sources: SettlementSources,
    timezone_name: str | None,
    user_id: int | None,
) -> CashSettlement:
    """
    Recompute, re-reading the breakdown when a concurrent open wrote it first.

    A competing recompute that added or removed the same breakdown row
    surfaces as IntegrityError or StaleDataError; the rollback in
    run_with_retry expires the settlement so the next attempt starts fresh.
    """
    settlement_id = settlement.id
    try:
        return run_with_retry(
            lambda: _recompute(settlement, sources, timezone_name, user_id),
            backoff_base=0.05,
            retry_on=(IntegrityError, StaleDataError, OperationalError),
        )
    except (IntegrityError, StaleDataError) as exc:
        current_app.logger.warning("Settlement %s breakdown kept changing during recompute", settlement_id)
        raise ConflictError(f"Settlement {settlement_id} is being updated concurrently; please retry") from exc


def create_or_get_settlement(
    company_id: int,
    branch_id: int,
    day: date | None,
    user_id: int | None,
    *,
    sources: SettlementSources | None = None,
) -> CashSettlement:
    """
    Open the settlement for a branch day, creating it if needed.

    - Existing PENDING/REJECTED settlement: totals recomputed, denominations kept
    - Existing SUBMITTED/VERIFIED settlement: returned unchanged
    - Missing: created with its breakdown rows in one commit

    `day` None means today in the branch's timezone.

    Raises:
        NotFoundError: branch missing or in another company
        TotalsFetchError: a source failed; nothing was written
        ConflictError: concurrent creation kept failing after every retry
    """
    branch = require_branch_in_company(branch_id, company_id)
    sources = sources or sql_sources()
    timezone_name = _branch_timezone(branch)
    day = business_date(day, timezone_name)
    attempts = current_app.config.get("SETTLEMENT_CREATE_ATTEMPTS", DEFAULT_CREATE_ATTEMPTS)

    for attempt in range(1, attempts + 1):
        settlement = _find_settlement(company_id, branch_id, day)
        if settlement is not None:
            if settlement.status in MUTABLE_STATUSES:
                return _recompute_with_retry(settlement, sources, timezone_name, user_id)
            return settlement

        totals = calculate_totals(company_id, branch_id, day, sources=sources, timezone_name=timezone_name)
        try:
            return _insert_settlement(company_id, branch_id, day, user_id, totals, sources)
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning(
                "Concurrent settlement creation for branch %s on %s; re-reading (attempt %d/%d)",
                branch_id, day.isoformat(), attempt, attempts,
            )

    raise ConflictError(
        f"Could not open settlement for branch {branch_id} on {day.isoformat()}; please retry"
    )


def get_settlement(settlement_id: int, company_id: int) -> CashSettlement:
    """Settlement with breakdown and denominations; NotFoundError outside the company."""
    return _get_scoped(settlement_id, company_id)


def update_denominations(settlement_id: int, company_id: int, counts: dict, *, user_id: int | None = None) -> CashSettlement:
    """
    Record the physical drawer count and recompute the variance.

    Sets physical_cash_count = denomination total and
    cash_difference = total - net_cash_amount (read from the row in SQL).

    Raises:
        ValidationError: unknown keys, non-integer or negative counts
        NotFoundError: settlement not in this company
        InvalidStateTransition: settlement is SUBMITTED or VERIFIED
    """
    counts = validate_denomination_counts(counts)
    total = calculate_denomination_total(counts)

    def _op():
        settlement = lock_for_update(
            db.session.query(CashSettlement).filter_by(id=settlement_id, company_id=company_id)
        ).first()
        if not settlement:
            raise NotFoundError(f"Settlement {settlement_id} not found")
        if settlement.status not in MUTABLE_STATUSES:
            raise _invalid_transition(settlement, ACTION_EDIT)

        previous_count = settlement.physical_cash_count_cents
        now = utcnow()

        row = settlement.denomination
        if row is None:
            row = CashDenomination()
            settlement.denomination = row
        for key, count in counts.items():
            setattr(row, f"{key}_count", count)
        row.total_amount_cents = total
        row.updated_at = now
        db.session.flush()  # concurrent first insert loses on uq_cash_denominations_settlement

        _guarded_update(
            settlement,
            MUTABLE_STATUSES,
            {
                "physical_cash_count_cents": total,
                "cash_difference_cents": total - CashSettlement.net_cash_amount_cents,
                "updated_at": now,
            },
            ACTION_EDIT,
        )
        append_settlement_event(
            settlement,
            EVENT_DENOMINATIONS_UPDATED,
            actor_user_id=user_id,
            payload={"counts": counts, "total_amount_cents": total, "previous_count_cents": previous_count},
            occurred_at=now,
        )
        db.session.commit()
        return _get_scoped(settlement_id, company_id)

    return run_with_retry(
        _op,
        backoff_base=0.05,
        retry_on=(IntegrityError, OperationalError, StaleDataError),
    )


def update_notes(settlement_id: int, company_id: int, notes: str | None, *, user_id: int | None = None) -> CashSettlement:
    """Free-text notes; same state guard as denominations."""
    settlement = _get_scoped(settlement_id, company_id)
    if settlement.status not in MUTABLE_STATUSES:
        raise _invalid_transition(settlement, ACTION_EDIT)

    now = utcnow()
    _guarded_update(
        settlement,
        MUTABLE_STATUSES,
        {"notes": notes, "updated_at": now},
        ACTION_EDIT,
    )
    append_settlement_event(settlement, EVENT_NOTES_UPDATED, actor_user_id=user_id, note=notes, occurred_at=now)
    db.session.commit()
    return _get_scoped(settlement_id, company_id)


def _transition(
    settlement_id: int,
    company_id: int,
    *,
    allowed,
    to_status: str,
    action: str,
    values: dict,
    event_type: str,
    actor_user_id: int | None,
    note: str | None = None,
) -> CashSettlement:
    settlement = _get_scoped(settlement_id, company_id)
    from_status = settlement.status

    _guarded_update(settlement, allowed, {"status": to_status, **values}, action)
    append_settlement_event(
        settlement,
        event_type,
        actor_user_id=actor_user_id,
        from_status=from_status,
        to_status=to_status,
        note=note,
        occurred_at=values.get("updated_at"),
    )
    return settlement


def submit_settlement(settlement_id: int, company_id: int, user_id: int) -> CashSettlement:
    """
    PENDING/REJECTED -> SUBMITTED.

    No recompute here; the last recomputed snapshot is what gets frozen.
    """
    now = utcnow()
    _transition(
        settlement_id,
        company_id,
        allowed=MUTABLE_STATUSES,
        to_status=SETTLEMENT_STATUS_SUBMITTED,
        action=ACTION_SUBMIT,
        values={
            "settled_at": now,
            "updated_at": now,
        },
        event_type=EVENT_SUBMITTED,
        actor_user_id=user_id,
    )
    db.session.commit()
    current_app.logger.info("Settlement %s submitted by user %s", settlement_id, user_id)
    return _get_scoped(settlement_id, company_id)


def verify_settlement(settlement_id: int, company_id: int, verifier_id: int, notes: str | None = None) -> CashSettlement:
    """
    SUBMITTED -> VERIFIED.

    Role checks are the caller's job; the verifier id is trusted. With
    SETTLEMENT_CARRY_FORWARD_ON_VERIFY set, closing balances become the next
    day's opening balances in the same transaction.
    """
    now = utcnow()
    settlement = _transition(
        settlement_id,
        company_id,
        allowed=(SETTLEMENT_STATUS_SUBMITTED,),
        to_status=SETTLEMENT_STATUS_VERIFIED,
        action=ACTION_VERIFY,
        values={
            "verified_by_user_id": verifier_id,
            "verified_at": now,
            "verification_notes": notes,
            "updated_at": now,
        },
        event_type=EVENT_VERIFIED,
        actor_user_id=verifier_id,
        note=notes,
    )
    if current_app.config.get("SETTLEMENT_CARRY_FORWARD_ON_VERIFY"):
        _stage_carry_forward(settlement, verifier_id)
    db.session.commit()
    current_app.logger.info("Settlement %s verified by user %s", settlement_id, verifier_id)
    return _get_scoped(settlement_id, company_id)


def reject_settlement(settlement_id: int, company_id: int, rejector_id: int, reason: str | None) -> CashSettlement:
    """
    SUBMITTED -> REJECTED.

    A blank reason is a ValidationError, checked before the settlement is read.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    now = utcnow()
    _transition(
        settlement_id,
        company_id,
        allowed=(SETTLEMENT_STATUS_SUBMITTED,),
        to_status=SETTLEMENT_STATUS_REJECTED,
        action=ACTION_REJECT,
        values={
            "rejected_by_user_id": rejector_id,
            "rejected_at": now,
            "rejection_reason": reason,
            "updated_at": now,
        },
        event_type=EVENT_REJECTED,
        actor_user_id=rejector_id,
        note=reason,
    )
    db.session.commit()
    current_app.logger.info("Settlement %s rejected by user %s", settlement_id, rejector_id)
    return _get_scoped(settlement_id, company_id)


def _stage_carry_forward(settlement: CashSettlement, user_id: int | None) -> list:
    rows = carry_forward_settlement(settlement)
    append_settlement_event(
        settlement,
        EVENT_CARRIED_FORWARD,
        actor_user_id=user_id,
        payload={
            "balance_date": rows[0].balance_date.isoformat() if rows else None,
            "openings": [[row.payment_method_id, row.opening_amount_cents] for row in rows],
        },
    )
    return rows


def carry_forward_closing_balances(settlement_id: int, company_id: int, user_id: int | None) -> list:
    """
    Write every method's closing balance as the next day's opening balance.

    Only VERIFIED settlements carry forward. Re-running overwrites the
    next day's openings with the same values.
    """
    def _op():
        settlement = _get_scoped(settlement_id, company_id)
        if settlement.status != SETTLEMENT_STATUS_VERIFIED:
            raise _invalid_transition(settlement, ACTION_CARRY_FORWARD)
        rows = _stage_carry_forward(settlement, user_id)
        db.session.commit()
        return rows

    return run_with_retry(_op, backoff_base=0.05, retry_on=(IntegrityError, OperationalError))


def list_settlements(
    company_id: int,
    branch_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Paginated settlement summaries, newest business date first."""
    if status is not None and status not in SETTLEMENT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(SETTLEMENT_STATUSES)}")
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    query = db.session.query(CashSettlement).filter(CashSettlement.company_id == company_id)
    if branch_id is not None:
        query = query.filter(CashSettlement.branch_id == branch_id)
    if start_date is not None:
        query = query.filter(CashSettlement.settlement_date >= start_date)
    if end_date is not None:
        query = query.filter(CashSettlement.settlement_date <= end_date)
    if status is not None:
        query = query.filter(CashSettlement.status == status)

    total = query.count()
    rows = (
        query.order_by(CashSettlement.settlement_date.desc(), CashSettlement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "settlements": [s.to_dict(include_breakdown=False) for s in rows],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


def get_settlement_events(settlement_id: int, company_id: int) -> list:
    _get_scoped(settlement_id, company_id)
    return list_settlement_events(settlement_id, company_id)
