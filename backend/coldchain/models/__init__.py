from .tenancy import Site
from .inventory import ColdRoom, Product, StockMovement
from .assets import ColdBox, ColdPlate, Tricycle
from .orders import Order, OrderItem
from .rentals import Rental
from .invoices import Invoice, InvoiceItem, InvoiceSequence
from .payments import Payment
from .audit import AuditLog

__all__ = [
    'Site',
    'ColdRoom', 'Product', 'StockMovement',
    'ColdBox', 'ColdPlate', 'Tricycle',
    'Order', 'OrderItem',
    'Rental',
    'Invoice', 'InvoiceItem', 'InvoiceSequence',
    'Payment',
    'AuditLog',
]
