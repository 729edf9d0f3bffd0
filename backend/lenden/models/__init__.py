from .tenancy import Shop
from .inventory import Product, Service, Vendor
from .customers import Customer
from .transactions import Transaction, TransactionLine
from .notifications import Notification

__all__ = [
    'Shop',
    'Product', 'Service', 'Vendor',
    'Customer',
    'Transaction', 'TransactionLine',
    'Notification',
]
