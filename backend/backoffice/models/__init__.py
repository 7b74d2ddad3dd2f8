from .branches import Branch
from .customers import Customer, CustomerAddress, CartItem
from .catalog import Product, ProductVariant, StockMovement
from .orders import Order, OrderItem, Coupon, CouponUsage
from .cash import CashSession, CashEntry
from .finance import AccountPayable, AccountReceivable, FinancialClosing
from .audit import AuditEvent

__all__ = [
    'Branch',
    'Customer', 'CustomerAddress', 'CartItem',
    'Product', 'ProductVariant', 'StockMovement',
    'Order', 'OrderItem', 'Coupon', 'CouponUsage',
    'CashSession', 'CashEntry',
    'AccountPayable', 'AccountReceivable', 'FinancialClosing',
    'AuditEvent',
]
