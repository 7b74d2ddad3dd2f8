# Overview: Flask API routes for financial review, accounts and closings; parses input and returns JSON responses.

# backend/backoffice/routes/finance.py
"""
Finance API Routes

DESIGN:
- Review queue: sessions closed by the stores, recomputed for inspection
- Approve (terminal) / reject (back to open, reason required)
- Accounts payable/receivable: create, patch, settle, cancel
- Period closings: generate (immutable), cancel (flag only)
- Dashboard: read-only cross-branch aggregates
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import get_services, json_body, page_args, patch_fields, resolve_actor
from ..validation import optional_date


finance_bp = Blueprint("finance", __name__, url_prefix="/api/finance")

_ACCOUNT_FIELDS = (
    "branch_id", "payment_method", "document_number", "notes",
)


# =============================================================================
# REVIEW QUEUE
# =============================================================================

@finance_bp.get("/pending")
def list_pending_route():
    page, per_page = page_args()
    result = get_services().reconciliation.list_pending(
        branch_id=request.args.get("branch_id", type=int),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@finance_bp.get("/sessions/<int:session_id>")
def review_session_route(session_id: int):
    return jsonify(get_services().reconciliation.review_detail(session_id)), 200


@finance_bp.post("/sessions/<int:session_id>/approve")
@resolve_actor
def approve_session_route(session_id: int):
    data = json_body()
    session = get_services().reconciliation.approve_session(session_id, g.actor_id, data.get("notes"))
    return jsonify({"session": session.to_dict()}), 200


@finance_bp.post("/sessions/<int:session_id>/reject")
@resolve_actor
def reject_session_route(session_id: int):
    """
    Request body:
    {
        "reason": "Card slips do not match entries" (required)
    }
    """
    data = json_body()
    session = get_services().reconciliation.reject_session(session_id, g.actor_id, data.get("reason"))
    return jsonify({"session": session.to_dict()}), 200


# =============================================================================
# ACCOUNTS PAYABLE
# =============================================================================

@finance_bp.post("/payables")
@resolve_actor
def create_payable_route():
    data = json_body()
    account = get_services().accounts.create_payable(
        data.get("description"),
        data.get("amount_cents"),
        data.get("due_date"),
        supplier_name=data.get("supplier_name"),
        user_id=g.actor_id,
        **{k: data.get(k) for k in _ACCOUNT_FIELDS},
    )
    return jsonify({"account": account.to_dict()}), 201


@finance_bp.get("/payables")
def list_payables_route():
    page, per_page = page_args()
    result = get_services().accounts.list_payables(
        branch_id=request.args.get("branch_id", type=int),
        status=request.args.get("status"),
        due_from=request.args.get("due_from"),
        due_to=request.args.get("due_to"),
        supplier_name=request.args.get("supplier_name"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@finance_bp.patch("/payables/<int:account_id>")
@resolve_actor
def update_payable_route(account_id: int):
    data = patch_fields("account_id")
    account = get_services().accounts.update_payable(account_id, g.actor_id, **data)
    return jsonify({"account": account.to_dict()}), 200


@finance_bp.post("/payables/<int:account_id>/settle")
@resolve_actor
def settle_payable_route(account_id: int):
    data = json_body()
    account = get_services().accounts.settle_payable(
        account_id,
        amount_cents=data.get("amount_cents"),
        settled_on=data.get("settled_on"),
        payment_method=data.get("payment_method"),
        user_id=g.actor_id,
        notes=data.get("notes"),
    )
    return jsonify({"account": account.to_dict()}), 200


@finance_bp.post("/payables/<int:account_id>/cancel")
@resolve_actor
def cancel_payable_route(account_id: int):
    account = get_services().accounts.cancel_payable(account_id, g.actor_id)
    return jsonify({"account": account.to_dict()}), 200


# =============================================================================
# ACCOUNTS RECEIVABLE
# =============================================================================

@finance_bp.post("/receivables")
@resolve_actor
def create_receivable_route():
    data = json_body()
    account = get_services().accounts.create_receivable(
        data.get("description"),
        data.get("amount_cents"),
        data.get("due_date"),
        customer_id=data.get("customer_id"),
        user_id=g.actor_id,
        **{k: data.get(k) for k in _ACCOUNT_FIELDS},
    )
    return jsonify({"account": account.to_dict()}), 201


@finance_bp.get("/receivables")
def list_receivables_route():
    page, per_page = page_args()
    result = get_services().accounts.list_receivables(
        branch_id=request.args.get("branch_id", type=int),
        status=request.args.get("status"),
        due_from=request.args.get("due_from"),
        due_to=request.args.get("due_to"),
        customer_id=request.args.get("customer_id", type=int),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@finance_bp.patch("/receivables/<int:account_id>")
@resolve_actor
def update_receivable_route(account_id: int):
    data = patch_fields("account_id")
    account = get_services().accounts.update_receivable(account_id, g.actor_id, **data)
    return jsonify({"account": account.to_dict()}), 200


@finance_bp.post("/receivables/<int:account_id>/settle")
@resolve_actor
def settle_receivable_route(account_id: int):
    data = json_body()
    account = get_services().accounts.settle_receivable(
        account_id,
        amount_cents=data.get("amount_cents"),
        settled_on=data.get("settled_on"),
        payment_method=data.get("payment_method"),
        user_id=g.actor_id,
        notes=data.get("notes"),
    )
    return jsonify({"account": account.to_dict()}), 200


@finance_bp.post("/receivables/<int:account_id>/cancel")
@resolve_actor
def cancel_receivable_route(account_id: int):
    account = get_services().accounts.cancel_receivable(account_id, g.actor_id)
    return jsonify({"account": account.to_dict()}), 200


# =============================================================================
# CLOSINGS
# =============================================================================

@finance_bp.post("/closings")
@resolve_actor
def generate_closing_route():
    """
    Request body:
    {
        "start_date": "2026-01-01",
        "end_date": "2026-01-31",
        "branch_ids": [1, 2] (optional, all branches when omitted),
        "notes": "..." (optional)
    }
    """
    data = json_body()
    result = get_services().reconciliation.generate_closing(
        data.get("start_date"),
        data.get("end_date"),
        branch_ids=data.get("branch_ids"),
        notes=data.get("notes"),
        user_id=g.actor_id,
    )
    return jsonify(result), 201


@finance_bp.get("/closings")
def list_closings_route():
    page, per_page = page_args()
    return jsonify(get_services().reconciliation.list_closings(page=page, per_page=per_page)), 200


@finance_bp.get("/closings/<int:closing_id>")
def get_closing_route(closing_id: int):
    closing = get_services().reconciliation.get_closing(closing_id)
    return jsonify({"closing": closing.to_dict()}), 200


@finance_bp.post("/closings/<int:closing_id>/cancel")
@resolve_actor
def cancel_closing_route(closing_id: int):
    data = json_body()
    closing = get_services().reconciliation.cancel_closing(closing_id, g.actor_id, data.get("reason"))
    return jsonify({"closing": closing.to_dict()}), 200


# =============================================================================
# DASHBOARD
# =============================================================================

@finance_bp.get("/dashboard")
def dashboard_route():
    today = optional_date(request.args.get("today"), "today")
    result = get_services().reconciliation.dashboard(
        today=today,
        due_soon_days=current_app.config["PAYABLES_DUE_SOON_DAYS"],
    )
    return jsonify(result), 200
