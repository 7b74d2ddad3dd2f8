# Overview: Flask API routes for store cash sessions and entries; parses input and returns JSON responses.

# backend/backoffice/routes/cash.py
"""
Cash Session API Routes

Store-side register operations: open today's session, record entries, close
with a declared amount. Review (approve/reject) lives under /api/finance.

Errors are raised as BackOfficeError subclasses and rendered by the app-level
handler as {"error", "code"[, "details"]}.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import get_services, json_body, page_args, patch_fields, resolve_actor
from ..errors import ValidationError
from ..validation import optional_date, require_choice
from ..models.cash import ENTRY_ORIGINS, ENTRY_TYPES
from backoffice.time_utils import day_bounds, parse_iso_datetime


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _range_args() -> tuple:
    """start/end query args: ISO datetimes, or plain dates covering whole days."""
    start_raw = request.args.get("start")
    end_raw = request.args.get("end")
    start = end = None
    try:
        if start_raw:
            start = parse_iso_datetime(start_raw) if "T" in start_raw else day_bounds(optional_date(start_raw, "start"))[0]
        if end_raw:
            end = parse_iso_datetime(end_raw) if "T" in end_raw else day_bounds(optional_date(end_raw, "end"))[1]
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 dates or datetimes")
    return start, end


# =============================================================================
# SESSIONS
# =============================================================================

@cash_bp.post("/sessions")
@resolve_actor
def open_session_route():
    """
    Open today's session for a branch.

    Request body:
    {
        "branch_id": 1,
        "opening_amount_cents": 10000,
        "notes": "..." (optional)
    }
    """
    data = json_body()
    session = get_services().cash.open_session(
        branch_id=data.get("branch_id"),
        operator_id=g.actor_id,
        opening_amount_cents=data.get("opening_amount_cents", 0),
        notes=data.get("notes"),
    )
    return jsonify({"session": session.to_dict()}), 201


@cash_bp.get("/sessions")
def list_sessions_route():
    page, per_page = page_args()
    result = get_services().cash.list_sessions(
        branch_id=request.args.get("branch_id", type=int),
        status=request.args.get("status"),
        start_date=optional_date(request.args.get("start_date"), "start_date"),
        end_date=optional_date(request.args.get("end_date"), "end_date"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@cash_bp.get("/sessions/<int:session_id>")
def get_session_route(session_id: int):
    return jsonify({"session": get_services().cash.get_session(session_id)}), 200


@cash_bp.post("/sessions/<int:session_id>/close")
@resolve_actor
def close_session_route(session_id: int):
    """
    Close a session and freeze its totals for review.

    Request body:
    {
        "declared_amount_cents": 13000 (optional),
        "notes": "..." (optional)
    }
    """
    data = json_body()
    session = get_services().cash.close_session(
        session_id,
        operator_id=g.actor_id,
        declared_amount_cents=data.get("declared_amount_cents"),
        notes=data.get("notes"),
    )
    return jsonify({"session": session.to_dict()}), 200


# =============================================================================
# ENTRIES
# =============================================================================

@cash_bp.post("/entries")
@resolve_actor
def create_entry_route():
    """
    Record an inbound or outbound movement.

    Attaches to the given session_id, or to the branch's open session for
    today, or to none (reconciled later by hand).
    """
    data = json_body()
    entry = get_services().cash.create_entry(
        branch_id=data.get("branch_id"),
        type=data.get("type"),
        amount_cents=data.get("amount_cents"),
        description=data.get("description"),
        session_id=data.get("session_id"),
        category=data.get("category"),
        payment_method=data.get("payment_method"),
        installments=data.get("installments"),
        order_id=data.get("order_id"),
        variant_id=data.get("variant_id"),
        customer_id=data.get("customer_id"),
        seller_id=data.get("seller_id"),
        origin=data.get("origin") or "store",
        actor_id=g.actor_id,
    )
    return jsonify({"entry": entry.to_dict()}), 201


@cash_bp.get("/entries")
def list_entries_route():
    page, per_page = page_args()
    start, end = _range_args()
    entry_type = request.args.get("type")
    if entry_type:
        require_choice(entry_type, ENTRY_TYPES, "type")
    origin = request.args.get("origin")
    if origin:
        require_choice(origin, ENTRY_ORIGINS, "origin")

    result = get_services().cash.list_entries(
        branch_id=request.args.get("branch_id", type=int),
        session_id=request.args.get("session_id", type=int),
        type=entry_type,
        start=start,
        end=end,
        seller_id=request.args.get("seller_id", type=int),
        origin=origin,
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@cash_bp.patch("/entries/<int:entry_id>")
@resolve_actor
def update_entry_route(entry_id: int):
    data = patch_fields("entry_id", "actor_id")
    entry = get_services().cash.update_entry(entry_id, actor_id=g.actor_id, **data)
    return jsonify({"entry": entry.to_dict()}), 200


@cash_bp.delete("/entries/<int:entry_id>")
@resolve_actor
def delete_entry_route(entry_id: int):
    get_services().cash.delete_entry(entry_id, actor_id=g.actor_id)
    return jsonify({"deleted": True, "id": entry_id}), 200


@cash_bp.get("/summary")
def entries_summary_route():
    start, end = _range_args()
    summary = get_services().cash.entries_summary(
        branch_id=request.args.get("branch_id", type=int),
        start=start,
        end=end,
    )
    return jsonify(summary), 200
