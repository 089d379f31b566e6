from .client import Client, Pet
from .inventory import InventoryItem, InventoryTransaction
from .invoice import Invoice, InvoiceItem
from .payment import Payment
from .purchase_order import PurchaseOrder, PurchaseOrderItem
from .sequence import SequenceCounter

__all__ = ["Client", "Pet", "InventoryItem", "InventoryTransaction", "Invoice", "InvoiceItem", "Payment", "PurchaseOrder", "PurchaseOrderItem", "SequenceCounter"]
