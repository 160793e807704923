# erp_engine/services/invoice_balances.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from erp_engine.core.config import settings
from erp_engine.core.money import D, ZERO, money2
from erp_engine.models.invoices import FROZEN_INVOICE_STATUSES, InvoiceStatus


def current_amount_due(invoice) -> Decimal:
    """total - paid from the source columns, never a cached due figure."""
    return money2(D(invoice.total_amount) - D(invoice.amount_paid))


def derive_invoice_status(invoice, tolerance: Optional[Decimal] = None) -> str:
    """
    PAID iff remaining due <= tolerance, else OPEN.
    DRAFT / CANCELLED / VOID are left as they are.
    """
    if invoice.status in FROZEN_INVOICE_STATUSES:
        return invoice.status
    tol = settings.PAID_TOLERANCE if tolerance is None else tolerance
    return InvoiceStatus.PAID.value if current_amount_due(invoice) <= tol else InvoiceStatus.OPEN.value


def post_payment(invoice, amount) -> None:
    invoice.amount_paid = money2(D(invoice.amount_paid) + D(amount))
    invoice.status = derive_invoice_status(invoice)


def unpost_payment(invoice, amount) -> None:
    invoice.amount_paid = money2(max(ZERO, D(invoice.amount_paid) - D(amount)))
    invoice.status = derive_invoice_status(invoice)


def repair_status(invoice) -> bool:
    """Read-time fix for non-terminal invoices whose status drifted from their balance."""
    expected = derive_invoice_status(invoice)
    if expected != invoice.status:
        invoice.status = expected
        return True
    return False
