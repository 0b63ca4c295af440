from .tenancy import Tenant, Store
from .catalog import Product
from .inventory import StockLevel, StockLedgerEntry
from .sales import Receipt, SaleLine, ParkedSale
from .shifts import Shift, ShiftCashMovement
from .documents import DocumentSequence
from .audit import AuditLog, EventQueueEntry

__all__ = [
    'Tenant', 'Store',
    'Product',
    'StockLevel', 'StockLedgerEntry',
    'Receipt', 'SaleLine', 'ParkedSale',
    'Shift', 'ShiftCashMovement',
    'DocumentSequence',
    'AuditLog', 'EventQueueEntry',
]
