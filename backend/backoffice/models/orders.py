from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, to_iso_date


ORDER_STATUSES = ("new", "picking", "shipped", "delivered", "cancelled", "returned")
PAYMENT_STATUSES = ("awaiting", "paid", "declined", "refunded")


class Order(db.Model):
    """
    Customer order committed from a cart snapshot.

    TOTALS (all cents):
    - subtotal_cents = sum(unit_price * quantity) over items
    - discount_total_cents = line discounts + coupon discount
    - total_cents = subtotal - discount_total + shipping

    Orders are never physically deleted; status_order and status_payment move
    independently through later workflow steps.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_branch_created", "origin_branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    origin_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    status_order = db.Column(db.String(16), nullable=False, default="new", index=True)
    status_payment = db.Column(db.String(16), nullable=False, default="awaiting", index=True)

    payment_method = db.Column(db.String(32), nullable=True)
    payment_installments = db.Column(db.Integer, nullable=True)
    external_payment_id = db.Column(db.String(128), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    shipping_address_id = db.Column(db.Integer, db.ForeignKey("customer_addresses.id"), nullable=True)

    # Tracking
    tracking_code = db.Column(db.String(64), nullable=True)
    tracking_url = db.Column(db.String(255), nullable=True)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    picked_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "origin_branch_id": self.origin_branch_id,
            "status_order": self.status_order,
            "status_payment": self.status_payment,
            "payment_method": self.payment_method,
            "payment_installments": self.payment_installments,
            "external_payment_id": self.external_payment_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_total_cents": self.discount_total_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "coupon_id": self.coupon_id,
            "shipping_address_id": self.shipping_address_id,
            "tracking_code": self.tracking_code,
            "tracking_url": self.tracking_url,
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "picked_by_user_id": self.picked_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Immutable line snapshot, priced at commit time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_discount_cents": self.unit_discount_cents,
            "line_total_cents": self.line_total_cents,
        }


class Coupon(db.Model):
    """
    Discount coupon with a usage limit.

    Either percent_bps (basis points of the discounted subtotal) or
    amount_cents (flat) applies. quantity_used never exceeds quantity_total:
    it is checked and incremented inside the order-commit transaction, and
    version_id turns a concurrent increment into a stale-data failure.
    """
    __tablename__ = "coupons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    percent_bps = db.Column(db.Integer, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=True)

    quantity_total = db.Column(db.Integer, nullable=False, default=0)
    quantity_used = db.Column(db.Integer, nullable=False, default=0)

    starts_on = db.Column(db.Date, nullable=True)
    ends_on = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def is_redeemable_on(self, day) -> bool:
        if not self.is_active:
            return False
        if self.starts_on is not None and self.starts_on > day:
            return False
        if self.ends_on is not None and self.ends_on < day:
            return False
        return self.quantity_used < self.quantity_total

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "percent_bps": self.percent_bps,
            "amount_cents": self.amount_cents,
            "quantity_total": self.quantity_total,
            "quantity_used": self.quantity_used,
            "starts_on": to_iso_date(self.starts_on),
            "ends_on": to_iso_date(self.ends_on),
            "is_active": self.is_active,
            "version_id": self.version_id,
        }


class CouponUsage(db.Model):
    """Append-only redemption record."""
    __tablename__ = "coupon_usages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "discount_cents": self.discount_cents,
            "created_at": to_utc_z(self.created_at),
        }
