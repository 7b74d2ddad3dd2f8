"""
Order commit engine tests.

An order commit is one unit of work: order row, item snapshots, stock
decrements, coupon usage and cart clear persist together or not at all.
"""

import pytest

from backoffice.errors import CouponUnavailableError, EmptyCartError, InsufficientStockError, NotFoundError
from backoffice.models import CartItem, Coupon, CouponUsage, Customer, CustomerAddress, Order, OrderItem, StockMovement
from backoffice.services.notification_service import ORDER_CREATED, ORDER_STATUS_CHANGED
from backoffice.services.order_service import unit_discount_cents


class TestCommitOrder:
    def test_commit_prices_lines_and_decrements_stock(self, services, db_session, customer, address, make_variant,
                                                      add_to_cart, notifier):
        v1 = make_variant(price_cents=10000, stock=5)
        v2 = make_variant(price_cents=5000, stock=3, discount_cents=500)
        add_to_cart(v1, quantity=2)
        add_to_cart(v2, quantity=1)

        order = services.orders.commit_order(customer.id, None, address.id, payment_method="pix",
                                             shipping_cents=1500)

        assert order.subtotal_cents == 25000
        assert order.discount_total_cents == 500
        assert order.shipping_cents == 1500
        assert order.total_cents == 26000
        assert order.status_order == "new"
        assert order.status_payment == "awaiting"

        items = db_session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
        assert [(i.quantity, i.unit_price_cents, i.unit_discount_cents, i.line_total_cents) for i in items] == [
            (2, 10000, 0, 20000),
            (1, 5000, 500, 4500),
        ]

        assert db_session.get(type(v1), v1.id).stock == 3
        assert db_session.get(type(v2), v2.id).stock == 2
        movements = db_session.query(StockMovement).filter_by(reference_type="order", reference_id=order.id).all()
        assert sorted((m.variant_id, m.type, m.quantity) for m in movements) == sorted(
            [(v1.id, "out", 2), (v2.id, "out", 1)]
        )
        assert db_session.query(CartItem).filter_by(customer_id=customer.id).count() == 0
        assert notifier.events[-1][0] == ORDER_CREATED

    def test_out_of_stock_leaves_everything_unchanged(self, services, db_session, customer, address, make_variant,
                                                      add_to_cart):
        variant = make_variant(stock=0)
        add_to_cart(variant, quantity=1)

        with pytest.raises(InsufficientStockError) as exc:
            services.orders.commit_order(customer.id, None, address.id)

        assert exc.value.details == {"variant_id": variant.id, "requested_quantity": 1, "available": 0}
        assert db_session.query(Order).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(CartItem).filter_by(customer_id=customer.id).count() == 1
        assert db_session.get(type(variant), variant.id).stock == 0

    def test_partial_shortage_rolls_back_every_line(self, services, db_session, customer, address, make_variant,
                                                    add_to_cart):
        plenty = make_variant(stock=10)
        short = make_variant(stock=1)
        add_to_cart(plenty, quantity=2)
        add_to_cart(short, quantity=2)

        with pytest.raises(InsufficientStockError):
            services.orders.commit_order(customer.id, None, address.id)

        assert db_session.get(type(plenty), plenty.id).stock == 10
        assert db_session.query(CartItem).filter_by(customer_id=customer.id).count() == 2

    def test_empty_cart(self, services, customer, address):
        with pytest.raises(EmptyCartError):
            services.orders.commit_order(customer.id, None, address.id)

    def test_inactive_variants_do_not_count(self, services, db_session, customer, address, variant, add_to_cart):
        add_to_cart(variant)
        variant.is_active = False
        db_session.commit()
        with pytest.raises(EmptyCartError):
            services.orders.commit_order(customer.id, None, address.id)

    def test_foreign_address_rejected(self, services, db_session, customer, variant, add_to_cart):
        other = Customer(full_name="Bruno Lima", is_active=True)
        db_session.add(other)
        db_session.flush()
        foreign = CustomerAddress(customer_id=other.id, street="x", city="y", state="RJ")
        db_session.add(foreign)
        db_session.commit()
        add_to_cart(variant)

        with pytest.raises(NotFoundError):
            services.orders.commit_order(customer.id, None, foreign.id)

    def test_unknown_customer(self, services, address):
        with pytest.raises(NotFoundError):
            services.orders.commit_order(999, None, address.id)


class TestCoupons:
    def test_single_use_percent_coupon(self, services, db_session, customer, address, make_variant, add_to_cart,
                                       make_coupon):
        variant = make_variant(price_cents=20000, stock=5)
        coupon = make_coupon(code="WELCOME10", percent_bps=1000, quantity_total=1)
        add_to_cart(variant)

        order = services.orders.commit_order(customer.id, None, address.id, coupon_code="welcome10",
                                             shipping_cents=1500)

        assert order.subtotal_cents == 20000
        assert order.discount_total_cents == 2000
        assert order.total_cents == 19500
        assert order.coupon_id == coupon.id
        assert db_session.get(Coupon, coupon.id).quantity_used == 1
        usage = db_session.query(CouponUsage).filter_by(order_id=order.id).one()
        assert usage.discount_cents == 2000

        # exhausted: ignored by default
        add_to_cart(variant)
        second = services.orders.commit_order(customer.id, None, address.id, coupon_code="WELCOME10")
        assert second.coupon_id is None
        assert second.discount_total_cents == 0
        assert db_session.get(Coupon, coupon.id).quantity_used == 1

    def test_last_use_redeemed_only_once(self, services, db_session, customer, address, make_variant, add_to_cart,
                                         make_coupon):
        variant = make_variant(price_cents=10000, stock=5)
        coupon = make_coupon(code="LAST", amount_cents=1000, quantity_total=1)

        add_to_cart(variant)
        services.orders.commit_order(customer.id, None, address.id, coupon_code="LAST", require_valid_coupon=True)

        add_to_cart(variant)
        with pytest.raises(CouponUnavailableError):
            services.orders.commit_order(customer.id, None, address.id, coupon_code="LAST",
                                         require_valid_coupon=True)

        assert db_session.get(Coupon, coupon.id).quantity_used == 1
        assert db_session.query(CouponUsage).count() == 1
        # failed commit left the cart alone
        assert db_session.query(CartItem).filter_by(customer_id=customer.id).count() == 1

    def test_flat_coupon_capped_at_discounted_subtotal(self, services, customer, address, make_variant,
                                                       add_to_cart, make_coupon):
        variant = make_variant(price_cents=3000, stock=5)
        make_coupon(code="BIG", amount_cents=5000, quantity_total=10)
        add_to_cart(variant)

        order = services.orders.commit_order(customer.id, None, address.id, coupon_code="BIG", shipping_cents=800)

        assert order.discount_total_cents == 3000
        assert order.total_cents == 800

    def test_expired_coupon(self, services, clock, customer, address, variant, add_to_cart, make_coupon):
        make_coupon(code="OLD", percent_bps=500, quantity_total=10, ends_on=clock().date().replace(day=1))
        add_to_cart(variant)
        with pytest.raises(CouponUnavailableError):
            services.orders.commit_order(customer.id, None, address.id, coupon_code="OLD",
                                         require_valid_coupon=True)

    def test_validate_coupon_preview(self, services, make_coupon):
        make_coupon(code="TEN", percent_bps=1000, quantity_total=3, quantity_used=1)

        result = services.coupons.validate_coupon("ten", 20000)

        assert result["valid"] is True
        assert result["discount_cents"] == 2000
        assert result["final_cents"] == 18000
        assert result["coupon"]["remaining_uses"] == 2

        assert services.coupons.validate_coupon("NOPE", 20000) == {
            "valid": False, "discount_cents": 0, "final_cents": 20000,
        }


class TestUnitDiscount:
    def test_flat_discount_wins_over_percent(self, make_variant):
        variant = make_variant(price_cents=10000, discount_cents=700, discount_bps=5000)
        assert unit_discount_cents(variant.product) == 700

    def test_percent_rounds_half_up(self, make_variant):
        variant = make_variant(price_cents=1005, discount_bps=1000)
        assert unit_discount_cents(variant.product) == 101


class TestOrderWorkflow:
    def _order(self, services, customer, address, variant, add_to_cart):
        add_to_cart(variant)
        return services.orders.commit_order(customer.id, None, address.id)

    def test_status_changes(self, services, customer, address, variant, add_to_cart, notifier):
        order = self._order(services, customer, address, variant, add_to_cart)

        updated = services.orders.update_order_status(order.id, "picking", picked_by_user_id=4, actor_id=4)
        assert updated.status_order == "picking"
        assert updated.picked_by_user_id == 4
        assert notifier.events[-1][0] == ORDER_STATUS_CHANGED

        paid = services.orders.update_payment_status(order.id, "paid", external_payment_id="pay_123")
        assert paid.status_payment == "paid"
        assert paid.external_payment_id == "pay_123"

    def test_invalid_status(self, services, customer, address, variant, add_to_cart):
        from backoffice.errors import ValidationError

        order = self._order(services, customer, address, variant, add_to_cart)
        with pytest.raises(ValidationError):
            services.orders.update_order_status(order.id, "teleported")

    def test_tracking(self, services, customer, address, variant, add_to_cart):
        order = self._order(services, customer, address, variant, add_to_cart)
        updated = services.orders.update_tracking(order.id, tracking_code="BR123", expected_delivery_date="2026-03-15")
        assert updated.tracking_code == "BR123"
        assert updated.expected_delivery_date.isoformat() == "2026-03-15"

    def test_get_order_includes_items_and_address(self, services, customer, address, variant, add_to_cart):
        order = self._order(services, customer, address, variant, add_to_cart)
        data = services.orders.get_order(order.id)
        assert len(data["items"]) == 1
        assert data["shipping_address"]["city"] == "Campinas"
