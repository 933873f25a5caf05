from .catalog import Product, DiscountRule, Supplier, PurchaseOrder, PurchaseOrderLine
from .inventory import StockMovement, StockCount
from .shifts import Shift, DrawerEvent
from .transactions import Transaction, TransactionLine, Refund, RefundLine
from .audit import IdempotencyRecord, AuditEvent, DocumentSequence

__all__ = [
    'Product', 'DiscountRule', 'Supplier', 'PurchaseOrder', 'PurchaseOrderLine',
    'StockMovement', 'StockCount',
    'Shift', 'DrawerEvent',
    'Transaction', 'TransactionLine', 'Refund', 'RefundLine',
    'IdempotencyRecord', 'AuditEvent', 'DocumentSequence',
]
