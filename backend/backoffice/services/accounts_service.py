"""
Accounts payable / receivable ledgers.

Both are short, independent ledgers (not tied to cash sessions) with the same
lifecycle, so one implementation serves both, parameterized by kind:

    pending --settle--> paid | received   (one-way, records what was applied)
    pending --cancel--> cancelled

Settled and cancelled accounts are read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ConflictError, NotFoundError
from ..models import AccountPayable, AccountReceivable, Branch, Customer
from ..pagination import paginate
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_account,
    optional_date,
    require_amount_cents,
    require_choice,
    validate_payload,
)
from backoffice.time_utils import utcnow


logger = logging.getLogger(__name__)

_COMMON_FIELDS = {
    "branch_id", "description", "amount_cents", "due_date",
    "payment_method", "document_number", "notes",
}


@dataclass(frozen=True)
class AccountKind:
    name: str
    model: type
    entity_type: str
    settled_status: str
    create_policy: ModelValidationPolicy
    update_policy: ModelValidationPolicy

    @property
    def statuses(self) -> tuple[str, ...]:
        return ("pending", self.settled_status, "cancelled")


PAYABLE = AccountKind(
    name="payable",
    model=AccountPayable,
    entity_type="account_payable",
    settled_status="paid",
    create_policy=ModelValidationPolicy(
        writable_fields=_COMMON_FIELDS | {"supplier_name"},
        required_on_create={"description", "amount_cents", "due_date"},
    ),
    update_policy=ModelValidationPolicy(writable_fields=_COMMON_FIELDS | {"supplier_name"}),
)

RECEIVABLE = AccountKind(
    name="receivable",
    model=AccountReceivable,
    entity_type="account_receivable",
    settled_status="received",
    create_policy=ModelValidationPolicy(
        writable_fields=_COMMON_FIELDS | {"customer_id"},
        required_on_create={"description", "amount_cents", "due_date"},
    ),
    update_policy=ModelValidationPolicy(writable_fields=_COMMON_FIELDS | {"customer_id"}),
)


class AccountsLedger:
    def __init__(self, store, *, audit=None, clock=utcnow):
        self.store = store
        self.audit = audit
        self.clock = clock

    # =========================================================================
    # SHARED IMPLEMENTATION
    # =========================================================================

    def _check_references(self, patch: dict) -> None:
        if patch.get("branch_id") is not None:
            self.store.get(Branch, patch["branch_id"], "Branch")
        if patch.get("customer_id") is not None:
            self.store.get(Customer, patch["customer_id"], "Customer")

    def _load_pending(self, uow, kind: AccountKind, account_id: int, verb: str):
        account = uow.locked(kind.model, id=account_id)
        if account is None:
            raise NotFoundError(f"Account {kind.name} not found")
        if account.status != "pending":
            raise ConflictError(
                f"Cannot {verb} an account {kind.name} with status {account.status}",
                details={"status": account.status},
            )
        return account

    def _create(self, kind: AccountKind, user_id: int | None, fields: dict):
        payload = {k: v for k, v in fields.items() if v is not None}
        patch = validate_payload(model=kind.model, payload=payload, policy=kind.create_policy, partial=False)
        enforce_rules_account(patch)

        with self.store.unit_of_work() as uow:
            self._check_references(patch)
            account = uow.add(kind.model(
                status="pending",
                created_by_id=user_id,
                created_at=self.clock(),
                **patch,
            ))
            uow.flush()

            if self.audit is not None:
                uow.after_commit(self.audit.record, kind.entity_type, account.id, "create", None, account.to_dict(), user_id)

        logger.info(
            "Account %s created", kind.name,
            extra={"account_id": account.id, "amount_cents": patch["amount_cents"]},
        )
        return account

    def _update(self, kind: AccountKind, account_id: int, user_id: int | None, fields: dict):
        patch = validate_payload(model=kind.model, payload=fields, policy=kind.update_policy, partial=True)
        enforce_rules_account(patch)

        with self.store.unit_of_work() as uow:
            account = self._load_pending(uow, kind, account_id, "update")
            self._check_references(patch)

            before = account.to_dict()
            for key, value in patch.items():
                setattr(account, key, value)
            account.updated_at = self.clock()
            uow.flush()

            if self.audit is not None:
                uow.after_commit(self.audit.record, kind.entity_type, account.id, "update", before, account.to_dict(), user_id)

        logger.info("Account %s updated", kind.name, extra={"account_id": account_id})
        return account

    def _settle(
        self,
        kind: AccountKind,
        account_id: int,
        amount_cents=None,
        settled_on=None,
        payment_method: str | None = None,
        user_id: int | None = None,
        notes: str | None = None,
    ):
        amount = None
        if amount_cents is not None:
            amount = require_amount_cents(amount_cents, "amount_cents")
        settled_day = optional_date(settled_on, "settled_on")

        with self.store.unit_of_work() as uow:
            account = self._load_pending(uow, kind, account_id, "settle")

            account.status = kind.settled_status
            account.settled_amount_cents = amount if amount is not None else account.amount_cents
            account.settled_on = settled_day or self.clock().date()
            if payment_method:
                account.payment_method = payment_method
            if notes:
                account.notes = notes
            account.settled_by_id = user_id
            account.updated_at = self.clock()
            uow.flush()

            if self.audit is not None:
                uow.after_commit(
                    self.audit.record, kind.entity_type, account.id, "status_change",
                    {"status": "pending"}, account.to_dict(), user_id,
                )

        logger.info(
            "Account %s settled", kind.name,
            extra={"account_id": account_id, "settled_amount_cents": account.settled_amount_cents},
        )
        return account

    def _cancel(self, kind: AccountKind, account_id: int, user_id: int | None):
        with self.store.unit_of_work() as uow:
            account = self._load_pending(uow, kind, account_id, "cancel")
            account.status = "cancelled"
            account.updated_at = self.clock()
            uow.flush()

            if self.audit is not None:
                uow.after_commit(
                    self.audit.record, kind.entity_type, account.id, "status_change",
                    {"status": "pending"}, account.to_dict(), user_id,
                )

        logger.info("Account %s cancelled", kind.name, extra={"account_id": account_id})
        return account

    def _list(
        self,
        kind: AccountKind,
        branch_id=None,
        status=None,
        due_from=None,
        due_to=None,
        page=1,
        per_page=None,
        **party,
    ) -> dict:
        model = kind.model
        query = self.store.query(model)
        if branch_id is not None:
            query = query.filter(model.branch_id == branch_id)
        if status:
            require_choice(status, kind.statuses, "status")
            query = query.filter(model.status == status)
        due_from = optional_date(due_from, "due_from")
        due_to = optional_date(due_to, "due_to")
        if due_from is not None:
            query = query.filter(model.due_date >= due_from)
        if due_to is not None:
            query = query.filter(model.due_date <= due_to)
        for key, value in party.items():
            if value is not None:
                query = query.filter(getattr(model, key) == value)
        query = query.order_by(model.due_date.asc(), model.id.asc())
        return paginate(query, page, per_page)

    # =========================================================================
    # PAYABLES
    # =========================================================================

    def create_payable(
        self,
        description: str,
        amount_cents,
        due_date,
        *,
        branch_id: int | None = None,
        supplier_name: str | None = None,
        payment_method: str | None = None,
        document_number: str | None = None,
        notes: str | None = None,
        user_id: int | None = None,
    ) -> AccountPayable:
        return self._create(PAYABLE, user_id, {
            "description": description,
            "amount_cents": amount_cents,
            "due_date": due_date,
            "branch_id": branch_id,
            "supplier_name": supplier_name,
            "payment_method": payment_method,
            "document_number": document_number,
            "notes": notes,
        })

    def update_payable(self, account_id: int, user_id: int | None = None, **fields) -> AccountPayable:
        return self._update(PAYABLE, account_id, user_id, fields)

    def settle_payable(self, account_id: int, amount_cents=None, settled_on=None, payment_method=None,
                       user_id=None, notes=None) -> AccountPayable:
        return self._settle(PAYABLE, account_id, amount_cents, settled_on, payment_method, user_id, notes)

    def cancel_payable(self, account_id: int, user_id: int | None = None) -> AccountPayable:
        return self._cancel(PAYABLE, account_id, user_id)

    def list_payables(self, branch_id=None, status=None, due_from=None, due_to=None,
                      supplier_name=None, page=1, per_page=None) -> dict:
        return self._list(PAYABLE, branch_id, status, due_from, due_to, page, per_page,
                          supplier_name=supplier_name)

    # =========================================================================
    # RECEIVABLES
    # =========================================================================

    def create_receivable(
        self,
        description: str,
        amount_cents,
        due_date,
        *,
        branch_id: int | None = None,
        customer_id: int | None = None,
        payment_method: str | None = None,
        document_number: str | None = None,
        notes: str | None = None,
        user_id: int | None = None,
    ) -> AccountReceivable:
        return self._create(RECEIVABLE, user_id, {
            "description": description,
            "amount_cents": amount_cents,
            "due_date": due_date,
            "branch_id": branch_id,
            "customer_id": customer_id,
            "payment_method": payment_method,
            "document_number": document_number,
            "notes": notes,
        })

    def update_receivable(self, account_id: int, user_id: int | None = None, **fields) -> AccountReceivable:
        return self._update(RECEIVABLE, account_id, user_id, fields)

    def settle_receivable(self, account_id: int, amount_cents=None, settled_on=None, payment_method=None,
                          user_id=None, notes=None) -> AccountReceivable:
        return self._settle(RECEIVABLE, account_id, amount_cents, settled_on, payment_method, user_id, notes)

    def cancel_receivable(self, account_id: int, user_id: int | None = None) -> AccountReceivable:
        return self._cancel(RECEIVABLE, account_id, user_id)

    def list_receivables(self, branch_id=None, status=None, due_from=None, due_to=None,
                         customer_id=None, page=1, per_page=None) -> dict:
        return self._list(RECEIVABLE, branch_id, status, due_from, due_to, page, per_page,
                          customer_id=customer_id)
