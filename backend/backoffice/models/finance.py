from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, to_iso_date


PAYABLE_STATUSES = ("pending", "paid", "cancelled")
RECEIVABLE_STATUSES = ("pending", "received", "cancelled")


class AccountPayable(db.Model):
    """
    Amount owed to a supplier or for an operating expense.

    Settlement (pending -> paid) is one-way and records what was actually
    applied: settled_on, settled_amount_cents and payment_method. Paid and
    cancelled rows are read-only.
    """
    __tablename__ = "accounts_payable"
    __table_args__ = (
        db.Index("ix_accounts_payable_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    supplier_name = db.Column(db.String(255), nullable=True)

    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    settled_on = db.Column(db.Date, nullable=True, index=True)
    settled_amount_cents = db.Column(db.Integer, nullable=True)

    payment_method = db.Column(db.String(32), nullable=True)
    document_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    settled_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "supplier_name": self.supplier_name,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "settled_on": to_iso_date(self.settled_on),
            "settled_amount_cents": self.settled_amount_cents,
            "payment_method": self.payment_method,
            "document_number": self.document_number,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "settled_by_id": self.settled_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AccountReceivable(db.Model):
    """Amount owed by a customer outside regular sales (pending -> received)."""
    __tablename__ = "accounts_receivable"
    __table_args__ = (
        db.Index("ix_accounts_receivable_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    settled_on = db.Column(db.Date, nullable=True, index=True)
    settled_amount_cents = db.Column(db.Integer, nullable=True)

    payment_method = db.Column(db.String(32), nullable=True)
    document_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    settled_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "settled_on": to_iso_date(self.settled_on),
            "settled_amount_cents": self.settled_amount_cents,
            "payment_method": self.payment_method,
            "document_number": self.document_number,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "settled_by_id": self.settled_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class FinancialClosing(db.Model):
    """
    Immutable consolidated snapshot for a date range.

    IMMUTABLE: revenue/expense/result and the JSON summary are written once.
    The cancellation fields are the only ones that change afterwards; at most
    one non-cancelled closing exists per exact (start_date, end_date) pair.
    """
    __tablename__ = "financial_closings"
    __table_args__ = (
        db.Index(
            "uq_financial_closings_period_active",
            "start_date",
            "end_date",
            unique=True,
            sqlite_where=db.text("is_cancelled = 0"),
            postgresql_where=db.text("is_cancelled = false"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    branch_ids = db.Column(db.JSON, nullable=True)  # NULL = all branches

    revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    expense_cents = db.Column(db.Integer, nullable=False, default=0)
    result_cents = db.Column(db.Integer, nullable=False, default=0)
    summary = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    is_cancelled = db.Column(db.Boolean, nullable=False, default=False, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "branch_ids": self.branch_ids,
            "revenue_cents": self.revenue_cents,
            "expense_cents": self.expense_cents,
            "result_cents": self.result_cents,
            "summary": self.summary,
            "notes": self.notes,
            "is_cancelled": self.is_cancelled,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_id": self.cancelled_by_id,
            "cancel_reason": self.cancel_reason,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
