# erp_engine/models/settlement.py
from __future__ import annotations

import enum
from datetime import datetime, date

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Text, Index
)
from sqlalchemy.orm import relationship

from erp_engine.db.base import Base

Money = Numeric(14, 2)


class PaymentStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PAID = "PAID"          # committing state: applications move invoice balances
    CANCELLED = "CANCELLED"


class ApplicationStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    REVERSED = "REVERSED"


class _SettlementHeaderColumns:
    currency_code = Column(String(10), default="USD", nullable=False)
    amount_applied = Column(Money, default=0, nullable=False)
    unapplied_amount = Column(Money, default=0, nullable=False)

    payment_method = Column(String(30), nullable=True)
    bank_account = Column(String(100), nullable=True)
    reference_number = Column(String(100), nullable=True)

    status = Column(String(20), default=PaymentStatus.DRAFT.value, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class _ApplicationColumns:
    applied_amount = Column(Money, nullable=False)
    # remaining due on the invoice right after this application (snapshot only)
    unapplied_amount = Column(Money, default=0, nullable=False)
    application_date = Column(Date, default=date.today, nullable=False)
    status = Column(String(20), default=ApplicationStatus.ACTIVE.value, nullable=False)
    notes = Column(String(500), nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# -------------------------
# AP payments
# -------------------------
class APPayment(_SettlementHeaderColumns, Base):
    __tablename__ = "ap_payments"

    id = Column(Integer, primary_key=True, autoincrement=False)
    payment_number = Column(String(50), unique=True, nullable=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    payment_date = Column(Date, nullable=False)
    payment_amount = Column(Money, nullable=False)

    supplier = relationship("Supplier")
    applications = relationship(
        "APPaymentApplication",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="APPaymentApplication.id",
    )


class APPaymentApplication(_ApplicationColumns, Base):
    __tablename__ = "ap_payment_applications"
    __table_args__ = (
        Index("ix_ap_app_invoice_status", "invoice_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=False)
    payment_id = Column(Integer, ForeignKey("ap_payments.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("ap_invoices.id"), nullable=False)

    payment = relationship("APPayment", back_populates="applications")
    invoice = relationship("APInvoice")


# -------------------------
# AR receipts
# -------------------------
class ARReceipt(_SettlementHeaderColumns, Base):
    __tablename__ = "ar_receipts"

    id = Column(Integer, primary_key=True, autoincrement=False)
    receipt_number = Column(String(50), unique=True, nullable=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    receipt_date = Column(Date, nullable=False)
    receipt_amount = Column(Money, nullable=False)

    customer = relationship("Customer")
    applications = relationship(
        "ARReceiptApplication",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ARReceiptApplication.id",
    )


class ARReceiptApplication(_ApplicationColumns, Base):
    __tablename__ = "ar_receipt_applications"
    __table_args__ = (
        Index("ix_ar_app_invoice_status", "invoice_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=False)
    receipt_id = Column(Integer, ForeignKey("ar_receipts.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("ar_invoices.id"), nullable=False)

    receipt = relationship("ARReceipt", back_populates="applications")
    invoice = relationship("ARInvoice")
