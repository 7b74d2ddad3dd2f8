"""
Financial Reconciliation Engine

The finance team's side of the back office:
- review queue of sessions closed by the stores (pending_approval)
- approve / reject, delegated to the cash session state machine
- period closings: immutable revenue/expense snapshots over approved sessions
  and settled payables/receivables
- cross-branch dashboard

Reads never trust stored aggregates of sessions still under review; they are
recomputed from the current entries.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import AccountPayable, AccountReceivable, Branch, CashEntry, CashSession, FinancialClosing
from ..pagination import paginate
from ..validation import coerce_int, optional_date, require_text
from backoffice.time_utils import day_bounds, utcnow


logger = logging.getLogger(__name__)


def _count_and_sum(query, amount_col) -> dict:
    count, total = query.with_entities(func.count(), func.coalesce(func.sum(amount_col), 0)).one()
    return {"count": int(count or 0), "total_cents": int(total or 0)}


class ReconciliationEngine:
    def __init__(self, store, *, cash, audit=None, clock=utcnow):
        self.store = store
        self.cash = cash
        self.audit = audit
        self.clock = clock

    # =========================================================================
    # REVIEW QUEUE
    # =========================================================================

    def list_pending(
        self,
        branch_id: int | None = None,
        start_date=None,
        end_date=None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        """Sessions awaiting review, oldest close first; dates filter on closed_at."""
        start_date = optional_date(start_date, "start_date")
        end_date = optional_date(end_date, "end_date")

        query = self.store.query(CashSession).filter(CashSession.status == "pending_approval")
        if branch_id is not None:
            query = query.filter(CashSession.branch_id == branch_id)
        if start_date is not None:
            query = query.filter(CashSession.closed_at >= day_bounds(start_date)[0])
        if end_date is not None:
            query = query.filter(CashSession.closed_at < day_bounds(end_date)[1])
        query = query.order_by(CashSession.closed_at.asc(), CashSession.id.asc())
        return paginate(query, page, per_page)

    def review_detail(self, session_id: int) -> dict:
        session = self.store.get(CashSession, session_id, "Cash session")
        entries = (
            self.store.query(CashEntry)
            .filter(CashEntry.session_id == session.id)
            .order_by(CashEntry.created_at.asc(), CashEntry.id.asc())
            .all()
        )

        total_in = 0
        total_out = 0
        by_payment_method: dict[str, int] = {}
        for e in entries:
            if e.type == "in":
                total_in += e.amount_cents
            else:
                total_out += e.amount_cents
            if e.payment_method:
                by_payment_method[e.payment_method] = by_payment_method.get(e.payment_method, 0) + e.amount_cents

        balance = (session.opening_amount_cents or 0) + total_in - total_out
        difference = None
        if session.declared_closing_cents is not None:
            difference = session.declared_closing_cents - balance

        return {
            "session": session.to_dict(),
            "entries": [e.to_dict() for e in entries],
            "recomputation": {
                "total_in_cents": total_in,
                "total_out_cents": total_out,
                "recomputed_balance_cents": balance,
                "difference_vs_declared_cents": difference,
                "by_payment_method": by_payment_method,
            },
        }

    def approve_session(self, session_id: int, reviewer_id: int | None, notes: str | None = None) -> CashSession:
        return self.cash.approve_session(session_id, reviewer_id, notes)

    def reject_session(self, session_id: int, reviewer_id: int | None, reason: str | None) -> CashSession:
        return self.cash.reject_session(session_id, reviewer_id, reason)

    # =========================================================================
    # PERIOD CLOSINGS
    # =========================================================================

    def generate_closing(
        self,
        start_date,
        end_date,
        branch_ids=None,
        notes: str | None = None,
        user_id: int | None = None,
    ) -> dict:
        """
        Consolidate a period into one immutable FinancialClosing.

        revenue = SUM(approved sessions total_in) + SUM(receivables received)
        expense = SUM(approved sessions total_out) + SUM(payables paid)

        Sessions count by the day they were closed, accounts by the day they
        were settled. Pending accounts due in the period are recorded in the
        summary but never enter revenue or expense.

        Raises:
            ValidationError: missing dates, start after end, malformed branch_ids
            ConflictError: a non-cancelled closing exists for the same period
        """
        start = optional_date(start_date, "start_date")
        end = optional_date(end_date, "end_date")
        if start is None or end is None:
            raise ValidationError("start_date and end_date are required")
        if start > end:
            raise ValidationError("start_date must be on or before end_date")

        if branch_ids is not None:
            if not isinstance(branch_ids, (list, tuple)):
                raise ValidationError("branch_ids must be a list")
            branch_ids = sorted({coerce_int(b, "branch_ids") for b in branch_ids}) or None

        range_start = day_bounds(start)[0]
        range_end = day_bounds(end)[1]

        with self.store.unit_of_work() as uow:
            existing = (
                uow.query(FinancialClosing)
                .filter_by(start_date=start, end_date=end, is_cancelled=False)
                .first()
            )
            if existing is not None:
                raise ConflictError(
                    "A closing already exists for this period; cancel it before generating a new one",
                    details={"closing_id": existing.id},
                )

            # 1. Approved sessions closed in range
            sessions_q = uow.query(CashSession).filter(
                CashSession.status == "approved",
                CashSession.closed_at >= range_start,
                CashSession.closed_at < range_end,
            )
            if branch_ids:
                sessions_q = sessions_q.filter(CashSession.branch_id.in_(branch_ids))
            sessions = sessions_q.order_by(CashSession.branch_id, CashSession.closed_at).all()

            sessions_in = sum(s.total_in_cents or 0 for s in sessions)
            sessions_out = sum(s.total_out_cents or 0 for s in sessions)
            sessions_balance = sum(s.computed_balance_cents or 0 for s in sessions)

            # 2-3. Accounts settled in range
            paid = self._settled_in_range(uow, AccountPayable, "paid", start, end, branch_ids)
            received = self._settled_in_range(uow, AccountReceivable, "received", start, end, branch_ids)
            total_paid = sum(a.settled_amount_cents or a.amount_cents for a in paid)
            total_received = sum(a.settled_amount_cents or a.amount_cents for a in received)

            # 4. Still-open accounts due in range
            open_payables = self._open_due_in_range(uow, AccountPayable, start, end, branch_ids)
            open_receivables = self._open_due_in_range(uow, AccountReceivable, start, end, branch_ids)

            revenue = sessions_in + total_received
            expense = sessions_out + total_paid
            summary = {
                "sessions": {
                    "count": len(sessions),
                    "total_in_cents": sessions_in,
                    "total_out_cents": sessions_out,
                    "balance_cents": sessions_balance,
                },
                "payables": {"count": len(paid), "total_paid_cents": total_paid},
                "receivables": {"count": len(received), "total_received_cents": total_received},
                "open": {"payables_cents": open_payables, "receivables_cents": open_receivables},
            }

            closing = uow.add(FinancialClosing(
                start_date=start,
                end_date=end,
                branch_ids=branch_ids,
                revenue_cents=revenue,
                expense_cents=expense,
                result_cents=revenue - expense,
                summary=summary,
                notes=notes,
                is_cancelled=False,
                created_by_id=user_id,
                created_at=self.clock(),
            ))
            try:
                uow.flush()
            except IntegrityError:
                raise ConflictError("A closing already exists for this period; cancel it before generating a new one")

            if self.audit is not None:
                uow.after_commit(self.audit.record, "financial_closing", closing.id, "create", None, closing.to_dict(), user_id)

            details = {
                "sessions": [s.to_dict() for s in sessions],
                "payables_paid": [a.to_dict() for a in paid],
                "receivables_received": [a.to_dict() for a in received],
                "summary": {
                    **summary,
                    "revenue_cents": revenue,
                    "expense_cents": expense,
                    "result_cents": revenue - expense,
                },
            }

        logger.info(
            "Financial closing generated",
            extra={"closing_id": closing.id, "start_date": start.isoformat(), "end_date": end.isoformat(),
                   "result_cents": revenue - expense},
        )
        return {"closing": closing.to_dict(), "details": details}

    def _settled_in_range(self, uow, model, status: str, start: date, end: date, branch_ids):
        query = uow.query(model).filter(
            model.status == status,
            model.settled_on >= start,
            model.settled_on <= end,
        )
        if branch_ids:
            query = query.filter(model.branch_id.in_(branch_ids))
        return query.order_by(model.settled_on, model.id).all()

    def _open_due_in_range(self, uow, model, start: date, end: date, branch_ids) -> int:
        query = uow.query(func.coalesce(func.sum(model.amount_cents), 0)).filter(
            model.status == "pending",
            model.due_date >= start,
            model.due_date <= end,
        )
        if branch_ids:
            query = query.filter(model.branch_id.in_(branch_ids))
        return int(query.scalar() or 0)

    def cancel_closing(self, closing_id: int, user_id: int | None, reason: str | None) -> FinancialClosing:
        """Flag a closing as cancelled; the figures themselves are never touched."""
        reason = require_text(reason, "reason")

        with self.store.unit_of_work() as uow:
            closing = uow.locked(FinancialClosing, id=closing_id)
            if closing is None:
                raise NotFoundError("Financial closing not found")
            if closing.is_cancelled:
                raise ConflictError("Financial closing is already cancelled", details={"closing_id": closing.id})

            closing.is_cancelled = True
            closing.cancelled_at = self.clock()
            closing.cancelled_by_id = user_id
            closing.cancel_reason = reason
            uow.flush()

            if self.audit is not None:
                uow.after_commit(
                    self.audit.record, "financial_closing", closing.id, "status_change",
                    {"is_cancelled": False}, closing.to_dict(), user_id,
                )

        logger.warning("Financial closing cancelled", extra={"closing_id": closing_id, "reason": reason})
        return closing

    def list_closings(self, page: int | None = 1, per_page: int | None = None) -> dict:
        query = self.store.query(FinancialClosing).order_by(
            FinancialClosing.created_at.desc(), FinancialClosing.id.desc()
        )
        return paginate(query, page, per_page)

    def get_closing(self, closing_id: int) -> FinancialClosing:
        return self.store.get(FinancialClosing, closing_id, "Financial closing")

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    def dashboard(self, today: date | None = None, due_soon_days: int = 7) -> dict:
        today = today or self.clock().date()
        horizon = today + timedelta(days=due_soon_days)

        open_count = self.store.query(CashSession).filter(CashSession.status == "open").count()
        pending_count = self.store.query(CashSession).filter(CashSession.status == "pending_approval").count()

        per_branch = (
            self.store.query(Branch.id, Branch.name, CashSession.status, func.count(CashSession.id))
            .join(CashSession, CashSession.branch_id == Branch.id)
            .filter(CashSession.opened_on == today)
            .group_by(Branch.id, Branch.name, CashSession.status)
            .order_by(Branch.name, CashSession.status)
            .all()
        )

        pending_payables = self.store.query(AccountPayable).filter(AccountPayable.status == "pending")
        due_soon = _count_and_sum(
            pending_payables.filter(AccountPayable.due_date >= today, AccountPayable.due_date <= horizon),
            AccountPayable.amount_cents,
        )
        overdue = _count_and_sum(
            pending_payables.filter(AccountPayable.due_date < today),
            AccountPayable.amount_cents,
        )
        receivables = _count_and_sum(
            self.store.query(AccountReceivable).filter(AccountReceivable.status == "pending"),
            AccountReceivable.amount_cents,
        )

        return {
            "today": today.isoformat(),
            "sessions": {
                "open": open_count,
                "pending_approval": pending_count,
                "by_branch_today": [
                    {"branch_id": bid, "branch_name": name, "status": status, "count": count}
                    for bid, name, status, count in per_branch
                ],
            },
            "payables": {"due_soon": due_soon, "overdue": overdue},
            "receivables": {"pending": receivables},
        }
