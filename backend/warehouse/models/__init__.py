from .inventory import Location, Pallet, PALLET_STATUS_ACTIVE, PALLET_STATUS_REMOVED
from .ledger import LedgerRecord, LEDGER_ACTIONS
from .billing import CustomerRate, Invoice, InvoicePayment

__all__ = [
    'Location', 'Pallet', 'PALLET_STATUS_ACTIVE', 'PALLET_STATUS_REMOVED',
    'LedgerRecord', 'LEDGER_ACTIONS',
    'CustomerRate', 'Invoice', 'InvoicePayment',
]
