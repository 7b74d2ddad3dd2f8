# Overview: Coupon eligibility and discount math shared by checkout reads and order commit.

from __future__ import annotations

from datetime import date

from ..models import Coupon
from ..validation import coerce_int
from .concurrency import lock_for_update
from backoffice.time_utils import utcnow


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def percent_of(amount_cents: int, bps: int) -> int:
    """bps of amount_cents, nearest cent, half-up."""
    return (amount_cents * bps + 5_000) // 10_000


def coupon_discount_cents(coupon: Coupon, base_cents: int) -> int:
    """
    Discount a coupon grants on base_cents.

    percent_bps wins when both are set. The result is capped at base_cents so
    a flat coupon can never push an order total below shipping.
    """
    if base_cents <= 0:
        return 0
    if coupon.percent_bps:
        discount = percent_of(base_cents, coupon.percent_bps)
    elif coupon.amount_cents:
        discount = coupon.amount_cents
    else:
        discount = 0
    return min(discount, base_cents)


class CouponDesk:
    def __init__(self, store, *, clock=utcnow):
        self.store = store
        self.clock = clock

    def find_redeemable(self, code: str | None, day: date | None = None, *, lock: bool = False) -> Coupon | None:
        """
        Coupon for code if it is active, inside its date window and has uses
        left; None otherwise. lock=True takes the row lock for the rest of the
        caller's transaction.
        """
        code = normalize_code(code)
        if not code:
            return None
        day = day or self.clock().date()
        query = self.store.query(Coupon).filter(Coupon.code == code)
        if lock:
            query = lock_for_update(query)
        coupon = query.first()
        if coupon is None or not coupon.is_redeemable_on(day):
            return None
        return coupon

    def validate_coupon(self, code: str | None, cart_total_cents) -> dict:
        """
        Side-effect-free preview of what a coupon would grant.

        Checkout calls this before commit; commit re-checks under lock, so a
        'valid' answer here is not a reservation.
        """
        cart_total_cents = coerce_int(cart_total_cents, "cart_total_cents")
        coupon = self.find_redeemable(code)
        if coupon is None:
            return {"valid": False, "discount_cents": 0, "final_cents": cart_total_cents}

        discount = coupon_discount_cents(coupon, cart_total_cents)
        return {
            "valid": True,
            "coupon": {
                "code": coupon.code,
                "kind": "percent" if coupon.percent_bps else "amount",
                "value": coupon.percent_bps or coupon.amount_cents,
                "remaining_uses": coupon.quantity_total - coupon.quantity_used,
            },
            "discount_cents": discount,
            "final_cents": cart_total_cents - discount,
        }
