from __future__ import annotations

import json

from ..extensions import db
from repairdesk.services.denominations import DENOMINATIONS
from repairdesk.time_utils import to_utc_z


class CashSettlement(db.Model):
    """
    End-of-day cash reconciliation for one branch and one calendar day.

    LIFECYCLE:
    1. PENDING: Created, totals recomputed on every open
    2. SUBMITTED: Branch staff hand over the counted drawer; snapshot frozen
    3. VERIFIED: Manager accepted the settlement (terminal)
    4. REJECTED: Manager sent it back with a reason; editable again

    WHY: The stored totals are a snapshot of the source collections at the
    last recompute. Once submitted, late-arriving payments no longer move
    the numbers the manager is reviewing.

    INVARIANT: at most one settlement per (branch_id, settlement_date),
    enforced by the unique constraint below.
    """
    __tablename__ = "cash_settlements"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "settlement_date", name="uq_cash_settlements_branch_date"),
        db.Index("ix_cash_settlements_company_date", "company_id", "settlement_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "SET-MG-20260110"; not unique on its own
    settlement_number = db.Column(db.String(64), nullable=False, index=True)

    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    settlement_date = db.Column(db.Date, nullable=False)

    # Snapshot totals (minor units)
    total_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    total_expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    net_cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_net_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Amounts whose payment method is unknown or no longer active
    unattributed_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    unattributed_refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    unattributed_expenses_cents = db.Column(db.Integer, nullable=False, default=0)

    # Physical drawer count (from denominations) and the variance against net
    physical_cash_count_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_difference_cents = db.Column(db.Integer, nullable=False, default=0)

    # PENDING, SUBMITTED, VERIFIED, REJECTED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    settled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)

    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    recalculated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch")
    methods = db.relationship(
        "CashSettlementMethod",
        backref="settlement",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CashSettlementMethod.payment_method_id",
    )
    denomination = db.relationship(
        "CashDenomination",
        backref="settlement",
        uselist=False,
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_breakdown: bool = True) -> dict:
        data = {
            "id": self.id,
            "settlement_number": self.settlement_number,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "settlement_date": self.settlement_date.isoformat() if self.settlement_date else None,
            "total_collected_cents": self.total_collected_cents,
            "total_refunds_cents": self.total_refunds_cents,
            "total_expenses_cents": self.total_expenses_cents,
            "net_cash_amount_cents": self.net_cash_amount_cents,
            "cash_net_amount_cents": self.cash_net_amount_cents,
            "unattributed": {
                "collected_cents": self.unattributed_collected_cents,
                "refunds_cents": self.unattributed_refunds_cents,
                "expenses_cents": self.unattributed_expenses_cents,
            },
            "physical_cash_count_cents": self.physical_cash_count_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "status": self.status,
            "settled_by_user_id": self.settled_by_user_id,
            "settled_at": to_utc_z(self.settled_at),
            "verified_by_user_id": self.verified_by_user_id,
            "verified_at": to_utc_z(self.verified_at),
            "verification_notes": self.verification_notes,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "recalculated_at": to_utc_z(self.recalculated_at),
        }
        if include_breakdown:
            data["methods"] = [m.to_dict() for m in self.methods]
            data["denomination"] = self.denomination.to_dict() if self.denomination else None
        return data


class CashSettlementMethod(db.Model):
    """
    Per-payment-method breakdown row of a settlement.

    INVARIANT: closing = opening + collected - refunded - expense
    """
    __tablename__ = "cash_settlement_methods"
    __table_args__ = (
        db.UniqueConstraint("settlement_id", "payment_method_id", name="uq_cash_settlement_methods_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("cash_settlements.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    collected_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refunded_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    expense_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_method_id": self.payment_method_id,
            "payment_method_name": self.payment_method.name if self.payment_method else None,
            "is_cash": self.payment_method.is_cash if self.payment_method else None,
            "opening_balance_cents": self.opening_balance_cents,
            "collected_amount_cents": self.collected_amount_cents,
            "refunded_amount_cents": self.refunded_amount_cents,
            "expense_amount_cents": self.expense_amount_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "transaction_count": self.transaction_count,
        }


class CashDenomination(db.Model):
    """
    Physical drawer count by note and coin (INR), one row per settlement.

    total_amount_cents = sum(count * face value) over all columns.
    """
    __tablename__ = "cash_denominations"
    __table_args__ = (
        db.UniqueConstraint("settlement_id", name="uq_cash_denominations_settlement"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("cash_settlements.id"), nullable=False)

    note_2000_count = db.Column(db.Integer, nullable=False, default=0)
    note_500_count = db.Column(db.Integer, nullable=False, default=0)
    note_200_count = db.Column(db.Integer, nullable=False, default=0)
    note_100_count = db.Column(db.Integer, nullable=False, default=0)
    note_50_count = db.Column(db.Integer, nullable=False, default=0)
    note_20_count = db.Column(db.Integer, nullable=False, default=0)
    note_10_count = db.Column(db.Integer, nullable=False, default=0)
    coin_5_count = db.Column(db.Integer, nullable=False, default=0)
    coin_2_count = db.Column(db.Integer, nullable=False, default=0)
    coin_1_count = db.Column(db.Integer, nullable=False, default=0)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def counts(self) -> dict[str, int]:
        return {key: getattr(self, f"{key}_count") or 0 for key, _value in DENOMINATIONS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "settlement_id": self.settlement_id,
            "counts": self.counts(),
            "total_amount_cents": self.total_amount_cents,
            "updated_at": to_utc_z(self.updated_at),
        }


class SettlementEvent(db.Model):
    """
    Settlement audit trail.

    IMMUTABLE: Append-only. One row per mutation (created, recalculated,
    denominations_updated, notes_updated, submitted, verified, rejected,
    carried_forward), written in the same transaction as the change.
    """
    __tablename__ = "settlement_events"
    __table_args__ = (
        db.Index("ix_settlement_events_settlement_occurred", "settlement_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("cash_settlements.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)
    note = db.Column(db.Text, nullable=True)

    # JSON-encoded details (e.g., old/new totals)
    payload = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "settlement_id": self.settlement_id,
            "branch_id": self.branch_id,
            "event_type": self.event_type,
            "actor_user_id": self.actor_user_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "payload": json.loads(self.payload) if self.payload else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
