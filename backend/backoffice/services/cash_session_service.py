"""
Cash Session State Machine

Governs one register's lifecycle per branch and calendar day, and the cash
entries recorded against it.

STATES:
- open -> pending_approval   (close_session: operator, totals frozen)
- pending_approval -> approved   (approve_session: financial reviewer, terminal)
- pending_approval -> open   (reject_session: closing fields cleared)

DESIGN PRINCIPLES:
- At most one open session per (branch, calendar day); pending sessions do
  not block opening a new one
- Balances are always recomputed from entries, never read from cached columns:
  computed_balance = opening_amount + SUM(in) - SUM(out)
- Entries of an approved session are immutable
- Every transition is one unit of work, audited and logged
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Branch, CashEntry, CashSession
from ..models.cash import SESSION_STATUSES
from ..pagination import paginate
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_cash_entry,
    require_amount_cents,
    require_choice,
    require_text,
    validate_payload,
)
from .notification_service import CASH_SESSION_APPROVED, CASH_SESSION_REJECTED, notify_safely
from backoffice.time_utils import utcnow


logger = logging.getLogger(__name__)

ENTRY_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "branch_id", "session_id", "type", "amount_cents", "description", "category",
        "payment_method", "installments", "order_id", "variant_id", "customer_id",
        "seller_id", "origin",
    },
    required_on_create={"branch_id", "type", "amount_cents", "description"},
)

ENTRY_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"description", "amount_cents", "payment_method", "installments", "type", "category"},
)


class CashSessionMachine:
    def __init__(self, store, *, audit=None, notifier=None, clock=utcnow):
        self.store = store
        self.audit = audit
        self.notifier = notifier
        self.clock = clock

    # =========================================================================
    # RECOMPUTATION
    # =========================================================================

    def compute_totals(self, session: CashSession) -> dict:
        """Live totals from the session's current entries."""
        total_in, total_out, count = (
            self.store.query(
                func.coalesce(func.sum(case((CashEntry.type == "in", CashEntry.amount_cents), else_=0)), 0),
                func.coalesce(func.sum(case((CashEntry.type == "out", CashEntry.amount_cents), else_=0)), 0),
                func.count(CashEntry.id),
            )
            .filter(CashEntry.session_id == session.id)
            .one()
        )
        total_in = int(total_in or 0)
        total_out = int(total_out or 0)
        return {
            "total_in_cents": total_in,
            "total_out_cents": total_out,
            "balance_cents": (session.opening_amount_cents or 0) + total_in - total_out,
            "entry_count": int(count or 0),
        }

    def _open_session_for(self, uow, branch_id: int, day: date) -> CashSession | None:
        return uow.locked(CashSession, branch_id=branch_id, status="open", opened_on=day)

    def _audit_transition(self, uow, session: CashSession, before: str, actor_id: int | None) -> None:
        if self.audit is not None:
            uow.after_commit(
                self.audit.record, "cash_session", session.id, "status_change",
                {"status": before}, session.to_dict(), actor_id,
            )

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def open_session(self, branch_id: int, operator_id: int | None, opening_amount_cents, notes: str | None = None) -> CashSession:
        """
        Open today's session for a branch.

        Raises:
            ValidationError: negative or malformed opening amount
            NotFoundError: unknown or inactive branch
            ConflictError: the branch already has an open session today
        """
        opening = require_amount_cents(opening_amount_cents, "opening_amount_cents", allow_zero=True)

        with self.store.unit_of_work() as uow:
            branch = self.store.get(Branch, branch_id, "Branch")
            if not branch.is_active:
                raise NotFoundError("Branch not found")

            now = self.clock()
            existing = self._open_session_for(uow, branch.id, now.date())
            if existing is not None:
                raise ConflictError(
                    "Branch already has an open cash session today; close it before opening another",
                    details={"session_id": existing.id},
                )

            session = uow.add(CashSession(
                branch_id=branch.id,
                opener_id=operator_id,
                status="open",
                opening_amount_cents=opening,
                opened_on=now.date(),
                opened_at=now,
                opening_notes=notes,
            ))
            try:
                uow.flush()
            except IntegrityError:
                raise ConflictError(
                    "Branch already has an open cash session today; close it before opening another",
                    details={"branch_id": branch.id},
                )

            if self.audit is not None:
                uow.after_commit(self.audit.record, "cash_session", session.id, "create", None, session.to_dict(), operator_id)

        logger.info("Cash session opened", extra={"session_id": session.id, "branch_id": branch_id, "operator_id": operator_id})
        return session

    def close_session(
        self,
        session_id: int,
        operator_id: int | None,
        declared_amount_cents=None,
        notes: str | None = None,
    ) -> CashSession:
        """
        Close an open session and send it to financial review.

        Totals are recomputed from entries at this moment and frozen on the row;
        difference is only set when the operator declared a counted amount.
        """
        declared = None
        if declared_amount_cents is not None:
            declared = require_amount_cents(declared_amount_cents, "declared_amount_cents", allow_zero=True)

        with self.store.unit_of_work() as uow:
            session = uow.locked(CashSession, id=session_id)
            if session is None:
                raise NotFoundError("Cash session not found")
            if session.status != "open":
                raise ConflictError(
                    f"Cash session cannot be closed; current status: {session.status}",
                    details={"status": session.status},
                )

            totals = self.compute_totals(session)
            session.closer_id = operator_id
            session.closed_at = self.clock()
            session.declared_closing_cents = declared
            session.total_in_cents = totals["total_in_cents"]
            session.total_out_cents = totals["total_out_cents"]
            session.computed_balance_cents = totals["balance_cents"]
            session.difference_cents = declared - totals["balance_cents"] if declared is not None else None
            session.closing_notes = notes
            session.status = "pending_approval"
            uow.flush()

            self._audit_transition(uow, session, "open", operator_id)

        logger.info(
            "Cash session closed, awaiting approval",
            extra={"session_id": session_id, "computed_balance_cents": totals["balance_cents"],
                   "difference_cents": session.difference_cents},
        )
        return session

    def approve_session(self, session_id: int, reviewer_id: int | None, notes: str | None = None) -> CashSession:
        """
        Approve a pending session (terminal).

        The reviewer may have corrected entries during the pending window, so
        totals are recomputed once more and the final values overwrite the
        ones frozen at close.
        """
        with self.store.unit_of_work() as uow:
            session = uow.locked(CashSession, id=session_id)
            if session is None:
                raise NotFoundError("Cash session not found")
            if session.status != "pending_approval":
                raise ConflictError(
                    f"Cash session is not pending approval; current status: {session.status}",
                    details={"status": session.status},
                )

            totals = self.compute_totals(session)
            session.total_in_cents = totals["total_in_cents"]
            session.total_out_cents = totals["total_out_cents"]
            session.computed_balance_cents = totals["balance_cents"]
            if session.declared_closing_cents is not None:
                session.difference_cents = session.declared_closing_cents - totals["balance_cents"]
            session.approver_id = reviewer_id
            session.approved_at = self.clock()
            session.approval_notes = notes
            session.status = "approved"
            uow.flush()

            self._audit_transition(uow, session, "pending_approval", reviewer_id)
            if self.notifier is not None:
                uow.after_commit(notify_safely, self.notifier, CASH_SESSION_APPROVED, session.to_dict())

        logger.info(
            "Cash session approved",
            extra={"session_id": session_id, "reviewer_id": reviewer_id, "computed_balance_cents": totals["balance_cents"]},
        )
        return session

    def reject_session(self, session_id: int, reviewer_id: int | None, reason: str | None) -> CashSession:
        """
        Send a pending session back to the operator.

        The session returns to open with every closing field cleared; the
        reason is written into closing_notes so the store sees why it reopened.
        Entries are untouched and stay editable.
        """
        reason = require_text(reason, "reason")

        with self.store.unit_of_work() as uow:
            session = uow.locked(CashSession, id=session_id)
            if session is None:
                raise NotFoundError("Cash session not found")
            if session.status != "pending_approval":
                raise ConflictError(
                    f"Cash session is not pending approval; current status: {session.status}",
                    details={"status": session.status},
                )

            other = self._open_session_for(uow, session.branch_id, session.opened_on)
            if other is not None:
                raise ConflictError(
                    "Branch already has another open cash session for that day; close it before rejecting",
                    details={"session_id": other.id},
                )

            session.status = "open"
            session.closer_id = None
            session.closed_at = None
            session.declared_closing_cents = None
            session.total_in_cents = None
            session.total_out_cents = None
            session.computed_balance_cents = None
            session.difference_cents = None
            session.closing_notes = f"Rejected by finance: {reason}"
            uow.flush()

            self._audit_transition(uow, session, "pending_approval", reviewer_id)
            if self.notifier is not None:
                uow.after_commit(
                    notify_safely, self.notifier, CASH_SESSION_REJECTED,
                    {"session_id": session.id, "branch_id": session.branch_id, "reason": reason},
                )

        logger.warning("Cash session rejected by finance", extra={"session_id": session_id, "reviewer_id": reviewer_id, "reason": reason})
        return session

    # =========================================================================
    # SESSION READS
    # =========================================================================

    def get_session(self, session_id: int) -> dict:
        session = self.store.get(CashSession, session_id, "Cash session")
        totals = self.compute_totals(session)
        data = session.to_dict()
        data["live_totals"] = totals
        data["entries"] = [e.to_dict() for e in session.entries]
        return data

    def list_sessions(
        self,
        branch_id: int | None = None,
        status: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        """Newest first; the date range filters on the opening day."""
        if status:
            require_choice(status, SESSION_STATUSES, "status")
        query = self.store.query(CashSession)
        if branch_id is not None:
            query = query.filter(CashSession.branch_id == branch_id)
        if status:
            query = query.filter(CashSession.status == status)
        if start_date is not None:
            query = query.filter(CashSession.opened_on >= start_date)
        if end_date is not None:
            query = query.filter(CashSession.opened_on <= end_date)
        query = query.order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        return paginate(query, page, per_page)

    # =========================================================================
    # ENTRIES
    # =========================================================================

    def _ensure_editable(self, uow, entry: CashEntry) -> None:
        if entry.session_id is None:
            return
        session = uow.locked(CashSession, id=entry.session_id)
        if session is not None and session.status == "approved":
            raise ConflictError(
                "Entries of an approved cash session cannot be changed",
                details={"session_id": session.id},
            )

    def create_entry(
        self,
        branch_id: int,
        type: str,
        amount_cents,
        description: str,
        session_id: int | None = None,
        *,
        category: str | None = None,
        payment_method: str | None = None,
        installments: int | None = None,
        order_id: int | None = None,
        variant_id: int | None = None,
        customer_id: int | None = None,
        seller_id: int | None = None,
        origin: str = "store",
        actor_id: int | None = None,
    ) -> CashEntry:
        """
        Record a cash movement.

        Without session_id the entry attaches to the branch's open session for
        today, or stays unattached (session_id NULL) when none is open. An
        explicit session_id must belong to the branch and must not be approved.
        """
        payload = {
            "branch_id": branch_id,
            "session_id": session_id,
            "type": type,
            "amount_cents": amount_cents,
            "description": description,
            "category": category,
            "payment_method": payment_method,
            "installments": installments,
            "order_id": order_id,
            "variant_id": variant_id,
            "customer_id": customer_id,
            "seller_id": seller_id,
            "origin": origin or "store",
        }
        patch = validate_payload(
            model=CashEntry,
            payload={k: v for k, v in payload.items() if v is not None},
            policy=ENTRY_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_cash_entry(patch)

        with self.store.unit_of_work() as uow:
            branch = self.store.get(Branch, patch["branch_id"], "Branch")
            now = self.clock()

            if patch.get("session_id") is not None:
                session = uow.locked(CashSession, id=patch["session_id"])
                if session is None:
                    raise NotFoundError("Cash session not found")
                if session.branch_id != branch.id:
                    raise ValidationError("Cash session belongs to another branch")
                if session.status == "approved":
                    raise ConflictError(
                        "Cannot add entries to an approved cash session",
                        details={"session_id": session.id},
                    )
            else:
                session = self._open_session_for(uow, branch.id, now.date())
                patch["session_id"] = session.id if session is not None else None

            entry = uow.add(CashEntry(created_at=now, **patch))
            uow.flush()

            if self.audit is not None:
                uow.after_commit(self.audit.record, "cash_entry", entry.id, "create", None, entry.to_dict(), actor_id)

        logger.info(
            "Cash entry created",
            extra={"entry_id": entry.id, "entry_type": patch["type"], "amount_cents": patch["amount_cents"],
                   "session_id": patch["session_id"]},
        )
        return entry

    def update_entry(self, entry_id: int, actor_id: int | None = None, **fields) -> CashEntry:
        """Patch description/amount/payment method/installments/type/category."""
        patch = validate_payload(model=CashEntry, payload=fields, policy=ENTRY_UPDATE_POLICY, partial=True)
        enforce_rules_cash_entry(patch)

        with self.store.unit_of_work() as uow:
            entry = uow.locked(CashEntry, id=entry_id)
            if entry is None:
                raise NotFoundError("Cash entry not found")
            self._ensure_editable(uow, entry)

            before = entry.to_dict()
            for key, value in patch.items():
                setattr(entry, key, value)
            entry.updated_at = self.clock()
            uow.flush()

            if self.audit is not None:
                uow.after_commit(self.audit.record, "cash_entry", entry.id, "update", before, entry.to_dict(), actor_id)

        logger.info("Cash entry updated", extra={"entry_id": entry_id, "fields": sorted(patch)})
        return entry

    def delete_entry(self, entry_id: int, actor_id: int | None = None) -> None:
        with self.store.unit_of_work() as uow:
            entry = uow.locked(CashEntry, id=entry_id)
            if entry is None:
                raise NotFoundError("Cash entry not found")
            self._ensure_editable(uow, entry)

            before = entry.to_dict()
            uow.delete(entry)
            uow.flush()

            if self.audit is not None:
                uow.after_commit(self.audit.record, "cash_entry", entry_id, "delete", before, None, actor_id)

        logger.info("Cash entry removed", extra={"entry_id": entry_id})

    def _entries_query(self, branch_id=None, session_id=None, type=None, start=None, end=None,
                       seller_id=None, origin=None):
        query = self.store.query(CashEntry)
        if branch_id is not None:
            query = query.filter(CashEntry.branch_id == branch_id)
        if session_id is not None:
            query = query.filter(CashEntry.session_id == session_id)
        if type:
            query = query.filter(CashEntry.type == type)
        if start is not None:
            query = query.filter(CashEntry.created_at >= start)
        if end is not None:
            query = query.filter(CashEntry.created_at <= end)
        if seller_id is not None:
            query = query.filter(CashEntry.seller_id == seller_id)
        if origin:
            query = query.filter(CashEntry.origin == origin)
        return query

    def list_entries(
        self,
        branch_id: int | None = None,
        session_id: int | None = None,
        type: str | None = None,
        start=None,
        end=None,
        seller_id: int | None = None,
        origin: str | None = None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        query = self._entries_query(branch_id, session_id, type, start, end, seller_id, origin)
        query = query.order_by(CashEntry.created_at.desc(), CashEntry.id.desc())
        return paginate(query, page, per_page)

    def entries_summary(self, branch_id: int | None = None, start=None, end=None) -> dict:
        """
        Totals over entries in a range.

        by_payment_method sums both directions; by_origin sums inbound only,
        matching how sales channels are reported.
        """
        entries = self._entries_query(branch_id=branch_id, start=start, end=end).all()

        total_in = 0
        total_out = 0
        by_payment_method: dict[str, int] = {}
        by_origin: dict[str, int] = {}
        for e in entries:
            if e.type == "in":
                total_in += e.amount_cents
                by_origin[e.origin] = by_origin.get(e.origin, 0) + e.amount_cents
            else:
                total_out += e.amount_cents
            if e.payment_method:
                by_payment_method[e.payment_method] = by_payment_method.get(e.payment_method, 0) + e.amount_cents

        return {
            "branch_id": branch_id,
            "start": start.isoformat() if start is not None else None,
            "end": end.isoformat() if end is not None else None,
            "entry_count": len(entries),
            "total_in_cents": total_in,
            "total_out_cents": total_out,
            "balance_cents": total_in - total_out,
            "by_payment_method": by_payment_method,
            "by_origin": by_origin,
        }
