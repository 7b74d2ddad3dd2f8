from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, to_iso_date


SESSION_STATUSES = ("open", "pending_approval", "approved")
ENTRY_TYPES = ("in", "out")
ENTRY_ORIGINS = ("store", "ecommerce")


class CashSession(db.Model):
    """
    One physical register lifecycle for a branch and calendar day.

    LIFECYCLE:
    - open: trading, entries attach here
    - pending_approval: closed by the operator, totals frozen from a recomputation
    - approved: terminal, entries become immutable

    A rejected session goes back to open with every closing field cleared; there
    is no persisted "rejected" status. opened_on is the UTC calendar day of
    opened_at and backs the "one open session per branch per day" rule.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_branch_day_open",
            "branch_id",
            "opened_on",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Identity collaborator ids, trusted as given
    opener_id = db.Column(db.Integer, nullable=True)
    closer_id = db.Column(db.Integer, nullable=True)
    approver_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(24), nullable=False, default="open", index=True)

    # Cash tracking (all amounts in cents)
    opening_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    declared_closing_cents = db.Column(db.Integer, nullable=True)
    total_in_cents = db.Column(db.Integer, nullable=True)
    total_out_cents = db.Column(db.Integer, nullable=True)
    computed_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # declared - computed

    opened_on = db.Column(db.Date, nullable=False, index=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opening_notes = db.Column(db.Text, nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("cash_sessions", lazy=True))
    entries = db.relationship("CashEntry", backref="session", lazy=True, order_by="CashEntry.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "opener_id": self.opener_id,
            "closer_id": self.closer_id,
            "approver_id": self.approver_id,
            "status": self.status,
            "opening_amount_cents": self.opening_amount_cents,
            "declared_closing_cents": self.declared_closing_cents,
            "total_in_cents": self.total_in_cents,
            "total_out_cents": self.total_out_cents,
            "computed_balance_cents": self.computed_balance_cents,
            "difference_cents": self.difference_cents,
            "opened_on": to_iso_date(self.opened_on),
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "approved_at": to_utc_z(self.approved_at),
            "opening_notes": self.opening_notes,
            "closing_notes": self.closing_notes,
            "approval_notes": self.approval_notes,
            "version_id": self.version_id,
        }


class CashEntry(db.Model):
    """
    One inbound or outbound monetary movement.

    session_id stays NULL when no session was open for the branch at write
    time; such entries are reconciled by hand later. Entries of an approved
    session are never updated or deleted.
    """
    __tablename__ = "cash_entries"
    __table_args__ = (
        db.Index("ix_cash_entries_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    type = db.Column(db.String(8), nullable=False)  # in, out
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    payment_method = db.Column(db.String(32), nullable=True)
    installments = db.Column(db.Integer, nullable=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    seller_id = db.Column(db.Integer, nullable=True)

    origin = db.Column(db.String(16), nullable=False, default="store")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "branch_id": self.branch_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "category": self.category,
            "payment_method": self.payment_method,
            "installments": self.installments,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "customer_id": self.customer_id,
            "seller_id": self.seller_id,
            "origin": self.origin,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
