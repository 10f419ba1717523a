from __future__ import annotations

from ..extensions import db
from repairdesk.time_utils import to_utc_z


class PaymentMethod(db.Model):
    """
    Company-defined tender (Cash, UPI, Card, ...).

    Only active methods appear in settlement breakdowns. is_cash marks the
    methods whose balances end up in the physical drawer.
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_payment_methods_company_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    is_cash = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "is_cash": self.is_cash,
            "is_active": self.is_active,
        }


class ServiceTicket(db.Model):
    """
    Repair job card. Owned by the ticketing subsystem.

    Settlement only reads the refund fields: a refunded ticket carries the
    refunded amount, when it happened and which tender paid it out.
    """
    __tablename__ = "service_tickets"
    __table_args__ = (
        db.UniqueConstraint("company_id", "ticket_number", name="uq_service_tickets_company_number"),
        db.Index("ix_service_tickets_branch_refunded", "branch_id", "refunded_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    ticket_number = db.Column(db.String(64), nullable=False)

    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Null when the refund tender was not recorded
    refund_payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "ticket_number": self.ticket_number,
            "refund_amount_cents": self.refund_amount_cents,
            "refunded_at": to_utc_z(self.refunded_at),
            "refund_payment_method_id": self.refund_payment_method_id,
        }


class PaymentEntry(db.Model):
    """
    Money received against a service ticket.

    Branch scoping goes through the owning ticket (service_id).
    """
    __tablename__ = "payment_entries"
    __table_args__ = (
        db.Index("ix_payment_entries_service_date", "service_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("service_tickets.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    service = db.relationship("ServiceTicket", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "payment_method_id": self.payment_method_id,
            "amount_cents": self.amount_cents,
            "payment_date": to_utc_z(self.payment_date),
        }


class Expense(db.Model):
    """Branch expense (tea, courier, spare parts bought over the counter)."""
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_branch_date", "branch_id", "expense_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payments = db.relationship(
        "ExpensePayment",
        backref="expense",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "expense_date": to_utc_z(self.expense_date),
            "description": self.description,
            "amount_cents": self.amount_cents,
            "payments": [p.to_dict() for p in self.payments],
        }


class ExpensePayment(db.Model):
    """One tender used to pay an expense; an expense may be split across methods."""
    __tablename__ = "expense_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "payment_method_id": self.payment_method_id,
            "amount_cents": self.amount_cents,
        }


class DailyOpeningBalance(db.Model):
    """
    Per-method opening (and recorded closing) balance for a branch day.

    Written by the explicit carry-forward operations; read by the totals
    calculator as the day's starting position.
    """
    __tablename__ = "daily_opening_balances"
    __table_args__ = (
        db.UniqueConstraint(
            "branch_id", "payment_method_id", "balance_date",
            name="uq_daily_opening_balances_branch_method_date",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)
    balance_date = db.Column(db.Date, nullable=False, index=True)

    opening_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_amount_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "payment_method_id": self.payment_method_id,
            "payment_method_name": self.payment_method.name if self.payment_method else None,
            "balance_date": self.balance_date.isoformat() if self.balance_date else None,
            "opening_amount_cents": self.opening_amount_cents,
            "closing_amount_cents": self.closing_amount_cents,
            "updated_at": to_utc_z(self.updated_at),
        }
