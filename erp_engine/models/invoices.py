# erp_engine/models/invoices.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Text
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship

from erp_engine.db.base import Base

Money = Numeric(14, 2)
Qty = Numeric(14, 4)


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    VOID = "VOID"


# statuses a settlement never overrides
FROZEN_INVOICE_STATUSES = {
    InvoiceStatus.DRAFT.value,
    InvoiceStatus.CANCELLED.value,
    InvoiceStatus.VOID.value,
}


class _InvoiceColumns:
    invoice_number = Column(String(50), unique=True, nullable=True, index=True)
    invoice_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    currency_code = Column(String(10), default="USD", nullable=False)
    exchange_rate = Column(Numeric(14, 6), default=1, nullable=False)

    subtotal = Column(Money, default=0, nullable=False)
    tax_amount = Column(Money, default=0, nullable=False)
    total_amount = Column(Money, default=0, nullable=False)
    amount_paid = Column(Money, default=0, nullable=False)

    status = Column(String(20), default=InvoiceStatus.DRAFT.value, nullable=False, index=True)
    approval_status = Column(String(20), default="PENDING", nullable=False)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @hybrid_property
    def amount_due(self):
        return (self.total_amount or 0) - (self.amount_paid or 0)

    @amount_due.expression
    def amount_due(cls):
        return cls.total_amount - cls.amount_paid


class APInvoice(_InvoiceColumns, Base):
    __tablename__ = "ap_invoices"

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    po_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=True)

    supplier = relationship("Supplier")


class ARInvoice(_InvoiceColumns, Base):
    __tablename__ = "ar_invoices"

    id = Column(Integer, primary_key=True, autoincrement=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    customer = relationship("Customer")
    lines = relationship(
        "ARInvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="ARInvoiceLine.line_number",
    )


class ARInvoiceLine(Base):
    __tablename__ = "ar_invoice_lines"

    line_id = Column(Integer, primary_key=True, autoincrement=False)
    invoice_id = Column(Integer, ForeignKey("ar_invoices.id"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)

    item_code = Column(String(100), nullable=True)
    item_name = Column(String(255), default="Item")
    description = Column(String(1000), default="")
    quantity = Column(Qty, default=1, nullable=False)
    unit_price = Column(Qty, default=0, nullable=False)
    line_amount = Column(Money, default=0, nullable=False)
    tax_rate = Column(Numeric(9, 4), default=0, nullable=False)
    tax_amount = Column(Money, default=0, nullable=False)

    invoice = relationship("ARInvoice", back_populates="lines")
