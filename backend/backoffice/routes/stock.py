# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import get_services, json_body, page_args, resolve_actor
from ..errors import ValidationError
from ..services.stock_service import MOVEMENT_TYPES
from ..validation import require_choice
from backoffice.time_utils import parse_iso_datetime


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/movements")
@resolve_actor
def record_movement_route():
    """
    Record a manual stock movement (receipt, loss, physical count, return).

    Request body:
    {
        "variant_id": 12,
        "type": "in" | "out" | "adjust" | "return",
        "quantity": 5,
        "reason": "supplier delivery" (optional)
    }
    """
    data = json_body()
    movement = get_services().stock.record_movement(
        variant_id=data.get("variant_id"),
        type=data.get("type"),
        quantity=data.get("quantity"),
        reason=data.get("reason"),
        reference_type=data.get("reference_type"),
        reference_id=data.get("reference_id"),
        user_id=g.actor_id,
    )
    return jsonify({"movement": movement.to_dict()}), 201


@stock_bp.get("/movements")
def list_movements_route():
    page, per_page = page_args()
    movement_type = request.args.get("type")
    if movement_type:
        require_choice(movement_type, MOVEMENT_TYPES, "type")

    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 datetimes")

    result = get_services().stock.list_movements(
        variant_id=request.args.get("variant_id", type=int),
        type=movement_type,
        start=start,
        end=end,
        user_id=request.args.get("user_id", type=int),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@stock_bp.get("/alerts")
def stock_alerts_route():
    alerts = get_services().stock.alerts()
    return jsonify({"items": alerts, "count": len(alerts)}), 200


@stock_bp.get("/summary")
def stock_summary_route():
    return jsonify(get_services().stock.summary()), 200
