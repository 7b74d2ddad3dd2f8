"""
Engine services and the container the app factory wires them into.

Each service receives its collaborators (store, audit trail, notifier, clock)
explicitly; nothing below reaches for a global connection on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class Services:
    store: Any
    audit: Any
    notifier: Any
    stock: Any
    coupons: Any
    orders: Any
    cash: Any
    accounts: Any
    reconciliation: Any


def build_services(session, *, notifier=None, clock=None) -> Services:
    """Wire every engine service around one SQLAlchemy session."""
    from ..store import LedgerStore
    from ..time_utils import utcnow
    from .audit_service import AuditTrail
    from .notification_service import LogNotifier
    from .stock_service import StockLedger
    from .coupon_service import CouponDesk
    from .order_service import OrderEngine
    from .cash_session_service import CashSessionMachine
    from .accounts_service import AccountsLedger
    from .reconciliation_service import ReconciliationEngine

    clock = clock or utcnow
    store = LedgerStore(session)
    audit = AuditTrail(session, clock=clock)
    notifier = notifier or LogNotifier()

    stock = StockLedger(store, audit=audit, clock=clock)
    coupons = CouponDesk(store, clock=clock)
    orders = OrderEngine(store, stock=stock, coupons=coupons, audit=audit, notifier=notifier, clock=clock)
    cash = CashSessionMachine(store, audit=audit, notifier=notifier, clock=clock)
    accounts = AccountsLedger(store, audit=audit, clock=clock)
    reconciliation = ReconciliationEngine(store, cash=cash, audit=audit, clock=clock)

    return Services(
        store=store,
        audit=audit,
        notifier=notifier,
        stock=stock,
        coupons=coupons,
        orders=orders,
        cash=cash,
        accounts=accounts,
        reconciliation=reconciliation,
    )
