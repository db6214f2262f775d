from .tenancy import Store
from .catalog import Product
from .orders import Order
from .receivables import Receivable, ReceivablePayment
from .sales import Sale
from .activity import ActivityLog

__all__ = [
    'Store',
    'Product',
    'Order',
    'Receivable', 'ReceivablePayment',
    'Sale',
    'ActivityLog',
]
