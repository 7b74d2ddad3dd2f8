# Overview: Stock Ledger; per-variant counters backed by append-only movements.

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import case, func

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product, ProductVariant, StockMovement
from ..pagination import paginate
from ..validation import coerce_int
from backoffice.time_utils import day_bounds, utcnow
"""
Stock Ledger Invariants (authoritative)

- ProductVariant.stock is the materialized sum of StockMovement rows.
- Both are written in the same unit of work; the movement row snapshots
  previous_stock and resulting_stock.
- Stock never goes negative: an 'out' larger than the live counter raises
  InsufficientStockError before anything is written.
- 'adjust' carries the new absolute level (a physical count), not a delta.
- Movements are append-only (no updates/deletes).
"""


logger = logging.getLogger(__name__)

MOVEMENT_TYPES = ("in", "out", "adjust", "return")


class StockLedger:
    def __init__(self, store, *, audit=None, clock=utcnow):
        self.store = store
        self.audit = audit
        self.clock = clock

    # =========================================================================
    # WRITES
    # =========================================================================

    def record_movement(
        self,
        variant_id: int,
        type: str,
        quantity,
        reason: str | None = None,
        reference_type: str | None = None,
        reference_id: int | None = None,
        user_id: int | None = None,
    ) -> StockMovement:
        """
        Record one movement and update the variant counter atomically.

        Raises:
            NotFoundError: unknown variant
            ValidationError: unknown type or bad quantity
            InsufficientStockError: an 'out' would take stock below zero
        """
        with self.store.unit_of_work() as uow:
            return self.apply_movement(
                uow,
                variant_id=variant_id,
                type=type,
                quantity=quantity,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                user_id=user_id,
            )

    def apply_movement(
        self,
        uow,
        *,
        variant_id: int,
        type: str,
        quantity,
        reason: str | None = None,
        reference_type: str | None = None,
        reference_id: int | None = None,
        user_id: int | None = None,
        variant: ProductVariant | None = None,
    ) -> StockMovement:
        """
        Same as record_movement, inside a caller's unit of work.

        The caller owns commit/rollback; the Order Commit Engine uses this so
        the order, its items and every stock decrement share one transaction.
        Pass an already-locked variant to skip the second lookup.
        """
        if type not in MOVEMENT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
        quantity = coerce_int(quantity, "quantity")
        if type == "adjust":
            if quantity < 0:
                raise ValidationError("quantity must be >= 0 for adjust")
        elif quantity <= 0:
            raise ValidationError("quantity must be > 0")

        if variant is None:
            variant = uow.locked(ProductVariant, id=variant_id)
            if variant is None:
                raise NotFoundError("Product variant not found")

        previous = variant.stock or 0
        if type in ("in", "return"):
            resulting = previous + quantity
        elif type == "out":
            resulting = previous - quantity
            if resulting < 0:
                raise InsufficientStockError(variant.id, quantity, previous)
        else:
            resulting = quantity

        now = self.clock()
        movement = uow.add(StockMovement(
            variant_id=variant.id,
            type=type,
            quantity=quantity,
            previous_stock=previous,
            resulting_stock=resulting,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            user_id=user_id,
            created_at=now,
        ))
        variant.stock = resulting
        variant.updated_at = now
        uow.flush()

        if self.audit is not None:
            uow.after_commit(
                self.audit.record, "stock_movement", movement.id, "create",
                None, movement.to_dict(), user_id,
            )
        logger.info(
            "Stock movement recorded",
            extra={"movement_id": movement.id, "variant_id": variant.id, "type": type,
                   "previous_stock": previous, "resulting_stock": resulting},
        )
        return movement

    # =========================================================================
    # READS
    # =========================================================================

    def list_movements(
        self,
        variant_id: int | None = None,
        type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        user_id: int | None = None,
        page: int | None = 1,
        per_page: int | None = None,
    ) -> dict:
        """Newest first. start/end are inclusive UTC bounds on created_at."""
        query = self.store.query(StockMovement)
        if variant_id is not None:
            query = query.filter(StockMovement.variant_id == variant_id)
        if type:
            query = query.filter(StockMovement.type == type)
        if start is not None:
            query = query.filter(StockMovement.created_at >= start)
        if end is not None:
            query = query.filter(StockMovement.created_at <= end)
        if user_id is not None:
            query = query.filter(StockMovement.user_id == user_id)
        query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        return paginate(query, page, per_page)

    def _alerts_query(self):
        return (
            self.store.query(ProductVariant, Product)
            .join(Product, ProductVariant.product_id == Product.id)
            .filter(
                ProductVariant.stock <= ProductVariant.min_stock,
                ProductVariant.is_active.is_(True),
                Product.is_active.is_(True),
            )
        )

    def alerts(self) -> list[dict]:
        """Active variants at or below their minimum, biggest shortfall first."""
        rows = (
            self._alerts_query()
            .order_by((ProductVariant.min_stock - ProductVariant.stock).desc(), ProductVariant.id)
            .all()
        )
        result = []
        for variant, product in rows:
            d = variant.to_dict()
            d["product_name"] = product.name
            d["sku"] = product.sku
            d["shortfall"] = variant.min_stock - variant.stock
            result.append(d)
        return result

    def summary(self) -> dict:
        active_products = self.store.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar()
        active_variants, total_units = (
            self.store.query(
                func.count(ProductVariant.id),
                func.coalesce(func.sum(ProductVariant.stock), 0),
            )
            .filter(ProductVariant.is_active.is_(True))
            .one()
        )
        alert_count = self._alerts_query().count()

        start, end = day_bounds(self.clock().date())
        moved_in, moved_out = (
            self.store.query(
                func.coalesce(func.sum(case((StockMovement.type == "in", StockMovement.quantity), else_=0)), 0),
                func.coalesce(func.sum(case((StockMovement.type == "out", StockMovement.quantity), else_=0)), 0),
            )
            .filter(StockMovement.created_at >= start, StockMovement.created_at < end)
            .one()
        )

        return {
            "active_products": int(active_products or 0),
            "active_variants": int(active_variants or 0),
            "total_units": int(total_units or 0),
            "low_stock_alerts": alert_count,
            "moved_today": {"in": int(moved_in or 0), "out": int(moved_out or 0)},
        }
