# Overview: Flask API routes for order commit, order workflow and coupon preview; parses input and returns JSON responses.

# backend/backoffice/routes/orders.py
"""
Order API Routes

POST /api/orders turns the customer's cart into an order in one unit of work
(stock decrements, coupon usage and cart clear included). The remaining
endpoints move an order through its fulfilment and payment workflow.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import get_services, json_body, page_args, resolve_actor
from ..models.orders import ORDER_STATUSES, PAYMENT_STATUSES
from ..validation import optional_date, require_choice
from backoffice.time_utils import day_bounds


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")
coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@orders_bp.post("")
@orders_bp.post("/")
@resolve_actor
def commit_order_route():
    """
    Commit the customer's cart.

    Request body:
    {
        "customer_id": 7,
        "address_id": 3,
        "branch_id": 1 (optional),
        "payment_method": "pix" (optional),
        "installments": 1 (optional),
        "coupon_code": "WELCOME10" (optional),
        "shipping_cents": 1500 (optional),
        "require_valid_coupon": false (optional)
    }
    """
    data = json_body()
    order = get_services().orders.commit_order(
        customer_id=data.get("customer_id"),
        branch_id=data.get("branch_id"),
        address_id=data.get("address_id"),
        payment_method=data.get("payment_method"),
        installments=data.get("installments"),
        coupon_code=data.get("coupon_code"),
        shipping_cents=data.get("shipping_cents", 0),
        require_valid_coupon=bool(data.get("require_valid_coupon", False)),
        external_payment_id=data.get("external_payment_id"),
    )
    return jsonify({"order": order.to_dict(include_items=True)}), 201


@orders_bp.get("")
@orders_bp.get("/")
def list_orders_route():
    page, per_page = page_args()
    status_order = request.args.get("status_order")
    if status_order:
        require_choice(status_order, ORDER_STATUSES, "status_order")
    status_payment = request.args.get("status_payment")
    if status_payment:
        require_choice(status_payment, PAYMENT_STATUSES, "status_payment")

    start_date = optional_date(request.args.get("start_date"), "start_date")
    end_date = optional_date(request.args.get("end_date"), "end_date")

    result = get_services().orders.list_orders(
        customer_id=request.args.get("customer_id", type=int),
        status_order=status_order,
        status_payment=status_payment,
        branch_id=request.args.get("branch_id", type=int),
        start=day_bounds(start_date)[0] if start_date else None,
        end=day_bounds(end_date)[1] if end_date else None,
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    return jsonify({"order": get_services().orders.get_order(order_id)}), 200


@orders_bp.patch("/<int:order_id>/status")
@resolve_actor
def update_order_status_route(order_id: int):
    data = json_body()
    order = get_services().orders.update_order_status(
        order_id,
        data.get("status_order"),
        picked_by_user_id=data.get("picked_by_user_id"),
        actor_id=g.actor_id,
    )
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.patch("/<int:order_id>/payment-status")
@resolve_actor
def update_payment_status_route(order_id: int):
    data = json_body()
    order = get_services().orders.update_payment_status(
        order_id,
        data.get("status_payment"),
        external_payment_id=data.get("external_payment_id"),
        actor_id=g.actor_id,
    )
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.patch("/<int:order_id>/tracking")
@resolve_actor
def update_tracking_route(order_id: int):
    data = json_body()
    order = get_services().orders.update_tracking(
        order_id,
        tracking_code=data.get("tracking_code"),
        tracking_url=data.get("tracking_url"),
        expected_delivery_date=data.get("expected_delivery_date"),
        actor_id=g.actor_id,
    )
    return jsonify({"order": order.to_dict()}), 200


@coupons_bp.post("/validate")
def validate_coupon_route():
    """
    Preview a coupon against a cart total. Nothing is reserved.

    Request body:
    {
        "code": "WELCOME10",
        "cart_total_cents": 20000
    }
    """
    data = json_body()
    result = get_services().coupons.validate_coupon(data.get("code"), data.get("cart_total_cents", 0))
    return jsonify(result), 200
