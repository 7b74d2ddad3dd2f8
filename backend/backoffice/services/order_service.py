# Overview: Order Commit Engine; turns a cart into an order with stock and coupon side effects.

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import CouponUnavailableError, EmptyCartError, InsufficientStockError, NotFoundError
from ..models import (
    Branch,
    CartItem,
    CouponUsage,
    Customer,
    CustomerAddress,
    Order,
    OrderItem,
    Product,
    ProductVariant,
)
from ..models.orders import ORDER_STATUSES, PAYMENT_STATUSES
from ..pagination import paginate
from ..validation import coerce_int, optional_date, require_amount_cents, require_choice
from .coupon_service import coupon_discount_cents, normalize_code, percent_of
from .notification_service import ORDER_CREATED, ORDER_STATUS_CHANGED, notify_safely
from backoffice.time_utils import utcnow
"""
Order Commit Invariants (authoritative)

- total = subtotal - discount_total + shipping, where discount_total is the
  sum of line discounts plus the coupon discount.
- subtotal = SUM(unit_price_cents * quantity) over the order's items.
- The order row, its items, the stock decrements, the coupon usage and the
  cart clear are one unit of work: either all persist or none do.
- Every business rule (empty cart, stock, coupon) is checked before the first
  write.
- Items are snapshots: later catalog price changes never touch them.
"""


logger = logging.getLogger(__name__)


def unit_discount_cents(product: Product) -> int:
    """Per-unit discount; a flat discount_cents takes precedence over discount_bps."""
    if product.discount_cents:
        discount = product.discount_cents
    elif product.discount_bps:
        discount = percent_of(product.price_cents, product.discount_bps)
    else:
        discount = 0
    return max(0, min(discount, product.price_cents))


class OrderEngine:
    def __init__(self, store, *, stock, coupons, audit=None, notifier=None, clock=utcnow):
        self.store = store
        self.stock = stock
        self.coupons = coupons
        self.audit = audit
        self.notifier = notifier
        self.clock = clock

    # =========================================================================
    # COMMIT
    # =========================================================================

    def commit_order(
        self,
        customer_id: int,
        branch_id: int | None,
        address_id: int | None,
        payment_method: str | None = None,
        installments: int | None = None,
        coupon_code: str | None = None,
        shipping_cents=0,
        *,
        require_valid_coupon: bool = False,
        external_payment_id: str | None = None,
    ) -> Order:
        """
        Commit the customer's cart as an order.

        Steps (one unit of work):
        1. Load cart lines for active variants/products (EmptyCartError if none)
        2. Lock each variant and check live stock (InsufficientStockError)
        3. Price each line from the current catalog
        4. Apply the coupon if redeemable (ignored otherwise, unless
           require_valid_coupon)
        5. Insert order + item snapshots, decrement stock through the ledger
        6. Record coupon usage and bump its counter
        7. Clear the cart

        Raises:
            NotFoundError: unknown/inactive customer, foreign address, unknown branch
            EmptyCartError, InsufficientStockError, CouponUnavailableError
        """
        shipping_cents = require_amount_cents(shipping_cents, "shipping_cents", allow_zero=True)
        if installments is not None:
            installments = coerce_int(installments, "installments")

        with self.store.unit_of_work() as uow:
            customer = self.store.session.get(Customer, customer_id) if customer_id is not None else None
            if customer is None or not customer.is_active:
                raise NotFoundError("Customer not found")

            address = None
            if address_id is not None:
                address = uow.query(CustomerAddress).filter_by(id=address_id, customer_id=customer.id).first()
            if address is None:
                raise NotFoundError("Address not found")

            if branch_id is not None:
                self.store.get(Branch, branch_id, "Branch")

            # 1. Cart snapshot
            lines = (
                uow.query(CartItem, ProductVariant, Product)
                .join(ProductVariant, CartItem.variant_id == ProductVariant.id)
                .join(Product, ProductVariant.product_id == Product.id)
                .filter(
                    CartItem.customer_id == customer.id,
                    ProductVariant.is_active.is_(True),
                    Product.is_active.is_(True),
                )
                .order_by(CartItem.id)
                .all()
            )
            if not lines:
                raise EmptyCartError("Cart is empty")

            # 2-3. Lock, check stock, price
            priced = []
            subtotal = 0
            line_discounts = 0
            for cart_item, variant, product in lines:
                variant = uow.locked(ProductVariant, id=variant.id)
                if variant.stock < cart_item.quantity:
                    raise InsufficientStockError(variant.id, cart_item.quantity, variant.stock)

                unit_price = product.price_cents
                unit_discount = unit_discount_cents(product)
                subtotal += unit_price * cart_item.quantity
                line_discounts += unit_discount * cart_item.quantity
                priced.append((cart_item, variant, product, unit_price, unit_discount))

            # 4. Coupon, re-read under lock
            coupon = None
            coupon_discount = 0
            if normalize_code(coupon_code):
                coupon = self.coupons.find_redeemable(coupon_code, self.clock().date(), lock=True)
                if coupon is None:
                    if require_valid_coupon:
                        raise CouponUnavailableError(
                            "Coupon is invalid, expired or exhausted",
                            details={"code": normalize_code(coupon_code)},
                        )
                    logger.warning(
                        "Ignoring unavailable coupon",
                        extra={"customer_id": customer.id, "coupon_code": normalize_code(coupon_code)},
                    )
                else:
                    coupon_discount = coupon_discount_cents(coupon, subtotal - line_discounts)

            # 5. Totals and writes
            discount_total = line_discounts + coupon_discount
            now = self.clock()
            order = uow.add(Order(
                customer_id=customer.id,
                origin_branch_id=branch_id,
                status_order="new",
                status_payment="awaiting",
                payment_method=payment_method,
                payment_installments=installments,
                external_payment_id=external_payment_id,
                subtotal_cents=subtotal,
                discount_total_cents=discount_total,
                shipping_cents=shipping_cents,
                total_cents=subtotal - discount_total + shipping_cents,
                coupon_id=coupon.id if coupon else None,
                shipping_address_id=address.id,
                created_at=now,
            ))
            uow.flush()

            for cart_item, variant, product, unit_price, unit_discount in priced:
                uow.add(OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    variant_id=variant.id,
                    quantity=cart_item.quantity,
                    unit_price_cents=unit_price,
                    unit_discount_cents=unit_discount,
                    line_total_cents=(unit_price - unit_discount) * cart_item.quantity,
                    created_at=now,
                ))
                self.stock.apply_movement(
                    uow,
                    variant_id=variant.id,
                    variant=variant,
                    type="out",
                    quantity=cart_item.quantity,
                    reason="order sale",
                    reference_type="order",
                    reference_id=order.id,
                )

            # 6. Coupon usage
            if coupon is not None:
                uow.add(CouponUsage(
                    coupon_id=coupon.id,
                    order_id=order.id,
                    customer_id=customer.id,
                    discount_cents=coupon_discount,
                    created_at=now,
                ))
                coupon.quantity_used = coupon.quantity_used + 1

            # 7. Clear cart
            uow.query(CartItem).filter(CartItem.customer_id == customer.id).delete(synchronize_session="fetch")
            uow.flush()

            snapshot = order.to_dict(include_items=True)
            if self.audit is not None:
                uow.after_commit(self.audit.record, "order", order.id, "create", None, snapshot, customer.id)
            if self.notifier is not None:
                uow.after_commit(notify_safely, self.notifier, ORDER_CREATED, snapshot)

        logger.info(
            "Order committed",
            extra={"order_id": order.id, "customer_id": customer_id, "total_cents": order.total_cents},
        )
        return order

    # =========================================================================
    # READS
    # =========================================================================

    def get_order(self, order_id: int) -> dict:
        order = self.store.get(Order, order_id, "Order")
        data = order.to_dict(include_items=True)
        if order.shipping_address_id:
            address = self.store.session.get(CustomerAddress, order.shipping_address_id)
            data["shipping_address"] = address.to_dict() if address else None
        return data

    def list_orders(
        self,
        customer_id: int | None = None,
        status_order: str | None = None,
        status_payment: str | None = None,
        branch_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        query = self.store.query(Order)
        if customer_id is not None:
            query = query.filter(Order.customer_id == customer_id)
        if status_order:
            query = query.filter(Order.status_order == status_order)
        if status_payment:
            query = query.filter(Order.status_payment == status_payment)
        if branch_id is not None:
            query = query.filter(Order.origin_branch_id == branch_id)
        if start is not None:
            query = query.filter(Order.created_at >= start)
        if end is not None:
            query = query.filter(Order.created_at <= end)
        query = query.order_by(Order.created_at.desc(), Order.id.desc())
        return paginate(query, page, per_page)

    # =========================================================================
    # WORKFLOW UPDATES
    # =========================================================================

    def _change_status(self, order_id: int, field: str, value: str, actor_id: int | None, **extra_fields) -> Order:
        with self.store.unit_of_work() as uow:
            order = uow.locked(Order, id=order_id)
            if order is None:
                raise NotFoundError("Order not found")

            previous = getattr(order, field)
            setattr(order, field, value)
            for key, val in extra_fields.items():
                if val is not None:
                    setattr(order, key, val)
            order.updated_at = self.clock()
            uow.flush()

            payload = {"order_id": order.id, "customer_id": order.customer_id,
                       "field": field, "from": previous, "to": value}
            if self.audit is not None:
                uow.after_commit(
                    self.audit.record, "order", order.id, "status_change",
                    {field: previous}, {field: value}, actor_id,
                )
            if self.notifier is not None:
                uow.after_commit(notify_safely, self.notifier, ORDER_STATUS_CHANGED, payload)

        logger.info("Order status changed", extra={"order_id": order_id, "field": field, "from": previous, "to": value})
        return order

    def update_order_status(
        self,
        order_id: int,
        status_order: str,
        picked_by_user_id: int | None = None,
        actor_id: int | None = None,
    ) -> Order:
        require_choice(status_order, ORDER_STATUSES, "status_order")
        return self._change_status(
            order_id, "status_order", status_order, actor_id,
            picked_by_user_id=picked_by_user_id,
        )

    def update_payment_status(
        self,
        order_id: int,
        status_payment: str,
        external_payment_id: str | None = None,
        actor_id: int | None = None,
    ) -> Order:
        require_choice(status_payment, PAYMENT_STATUSES, "status_payment")
        return self._change_status(
            order_id, "status_payment", status_payment, actor_id,
            external_payment_id=external_payment_id,
        )

    def update_tracking(
        self,
        order_id: int,
        tracking_code: str | None = None,
        tracking_url: str | None = None,
        expected_delivery_date=None,
        actor_id: int | None = None,
    ) -> Order:
        expected = optional_date(expected_delivery_date, "expected_delivery_date")
        with self.store.unit_of_work() as uow:
            order = uow.locked(Order, id=order_id)
            if order is None:
                raise NotFoundError("Order not found")

            before = order.to_dict()
            if tracking_code is not None:
                order.tracking_code = tracking_code.strip() or None
            if tracking_url is not None:
                order.tracking_url = tracking_url.strip() or None
            if expected is not None:
                order.expected_delivery_date = expected
            order.updated_at = self.clock()
            uow.flush()

            if self.audit is not None:
                uow.after_commit(self.audit.record, "order", order.id, "update", before, order.to_dict(), actor_id)

        logger.info("Order tracking updated", extra={"order_id": order_id})
        return order
