# erp_engine/models/__init__.py
from .numbering import Sequence, DocumentNumberConfig, PONumberTracking
from .party import Supplier, Customer
from .inventory import InventoryItem, InventoryItemDetail
from .procurement import (
    DocStatus,
    ApprovalStatus,
    ReceiptStatus,
    Requisition,
    RequisitionLine,
    Agreement,
    AgreementLine,
    PurchaseOrder,
    PurchaseOrderLine,
    GoodsReceipt,
    GoodsReceiptLine,
)
from .invoices import InvoiceStatus, APInvoice, ARInvoice, ARInvoiceLine
from .settlement import (
    PaymentStatus,
    ApplicationStatus,
    APPayment,
    APPaymentApplication,
    ARReceipt,
    ARReceiptApplication,
)
from .audit import AuditLog

__all__ = [
    "Sequence",
    "DocumentNumberConfig",
    "PONumberTracking",
    "Supplier",
    "Customer",
    "InventoryItem",
    "InventoryItemDetail",
    "DocStatus",
    "ApprovalStatus",
    "ReceiptStatus",
    "Requisition",
    "RequisitionLine",
    "Agreement",
    "AgreementLine",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "GoodsReceipt",
    "GoodsReceiptLine",
    "InvoiceStatus",
    "APInvoice",
    "ARInvoice",
    "ARInvoiceLine",
    "PaymentStatus",
    "ApplicationStatus",
    "APPayment",
    "APPaymentApplication",
    "ARReceipt",
    "ARReceiptApplication",
    "AuditLog",
]
