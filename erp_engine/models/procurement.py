# erp_engine/models/procurement.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Text, Index
)
from sqlalchemy.orm import relationship

from erp_engine.db.base import Base

Money = Numeric(14, 2)
Qty = Numeric(14, 4)
Rate = Numeric(9, 4)


# -------------------------
# Enums
# -------------------------
class DocStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    RELEASED = "RELEASED"
    RECEIVED = "RECEIVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReceiptStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


# -------------------------
# Shared columns
# -------------------------
class _HeaderColumns:
    description = Column(String(1000), default="")
    currency_code = Column(String(10), default="USD", nullable=False)
    exchange_rate = Column(Numeric(14, 6), default=1, nullable=False)

    subtotal = Column(Money, default=0, nullable=False)
    tax_amount = Column(Money, default=0, nullable=False)
    total_amount = Column(Money, default=0, nullable=False)

    status = Column(String(20), default=DocStatus.DRAFT.value, nullable=False, index=True)
    approval_status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class _LineColumns:
    line_number = Column(Integer, nullable=False)
    item_code = Column(String(100), nullable=True, index=True)
    item_name = Column(String(255), default="")
    description = Column(String(1000), default="")
    uom = Column(String(30), default="EA")

    quantity = Column(Qty, default=0, nullable=False)
    unit_price = Column(Qty, default=0, nullable=False)
    line_amount = Column(Money, default=0, nullable=False)
    tax_rate = Column(Rate, default=0, nullable=False)
    tax_amount = Column(Money, default=0, nullable=False)


# -------------------------
# Requisition
# -------------------------
class Requisition(_HeaderColumns, Base):
    __tablename__ = "requisitions"

    id = Column(Integer, primary_key=True, autoincrement=False)
    requisition_number = Column(String(50), unique=True, nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True, index=True)
    need_by_date = Column(Date, nullable=True)

    supplier = relationship("Supplier")
    lines = relationship(
        "RequisitionLine",
        back_populates="requisition",
        cascade="all, delete-orphan",
        order_by="RequisitionLine.line_number",
    )


class RequisitionLine(_LineColumns, Base):
    __tablename__ = "requisition_lines"

    line_id = Column(Integer, primary_key=True, autoincrement=False)
    requisition_id = Column(Integer, ForeignKey("requisitions.id"), nullable=False, index=True)

    requisition = relationship("Requisition", back_populates="lines")


# -------------------------
# Agreement
# -------------------------
class Agreement(_HeaderColumns, Base):
    __tablename__ = "agreements"

    id = Column(Integer, primary_key=True, autoincrement=False)
    agreement_number = Column(String(50), unique=True, nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    agreement_type = Column(String(30), default="BLANKET")
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    supplier = relationship("Supplier")
    lines = relationship(
        "AgreementLine",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="AgreementLine.line_number",
    )


class AgreementLine(_LineColumns, Base):
    __tablename__ = "agreement_lines"

    line_id = Column(Integer, primary_key=True, autoincrement=False)
    agreement_id = Column(Integer, ForeignKey("agreements.id"), nullable=False, index=True)
    min_quantity = Column(Qty, nullable=True)
    max_quantity = Column(Qty, nullable=True)

    agreement = relationship("Agreement", back_populates="lines")


# -------------------------
# Purchase order
# -------------------------
class PurchaseOrder(_HeaderColumns, Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, autoincrement=False)
    po_number = Column(String(50), unique=True, nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    requisition_id = Column(Integer, ForeignKey("requisitions.id"), nullable=True)
    agreement_id = Column(Integer, ForeignKey("agreements.id"), nullable=True)
    po_date = Column(Date, nullable=True)
    need_by_date = Column(Date, nullable=True)

    # cumulative value received across non-cancelled receipts
    amount_received = Column(Money, default=0, nullable=False)

    supplier = relationship("Supplier")
    lines = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number",
    )
    receipts = relationship("GoodsReceipt", back_populates="purchase_order")


class PurchaseOrderLine(_LineColumns, Base):
    __tablename__ = "purchase_order_lines"

    line_id = Column(Integer, primary_key=True, autoincrement=False)
    po_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False, index=True)

    box_quantity = Column(Qty, default=0, nullable=False)
    packet_quantity = Column(Qty, default=0, nullable=False)

    quantity_received = Column(Qty, default=0, nullable=False)
    quantity_accepted = Column(Qty, default=0, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")


# -------------------------
# Goods receipt
# -------------------------
class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"
    __table_args__ = (
        Index("ix_goods_receipt_po_status", "po_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=False)
    receipt_number = Column(String(50), unique=True, nullable=False, index=True)
    po_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    receipt_date = Column(Date, nullable=True)
    currency_code = Column(String(10), default="USD", nullable=False)

    subtotal = Column(Money, default=0, nullable=False)
    tax_amount = Column(Money, default=0, nullable=False)
    total_amount = Column(Money, default=0, nullable=False)

    status = Column(String(20), default=ReceiptStatus.RECEIVED.value, nullable=False)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="receipts")
    lines = relationship(
        "GoodsReceiptLine",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="GoodsReceiptLine.line_number",
    )


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"

    line_id = Column(Integer, primary_key=True, autoincrement=False)
    receipt_id = Column(Integer, ForeignKey("goods_receipts.id"), nullable=False, index=True)
    po_line_id = Column(Integer, ForeignKey("purchase_order_lines.line_id"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)

    item_code = Column(String(100), nullable=True)
    item_name = Column(String(255), default="")
    uom = Column(String(30), default="EA")

    quantity_ordered = Column(Qty, default=0, nullable=False)
    quantity_received = Column(Qty, default=0, nullable=False)
    quantity_accepted = Column(Qty, default=0, nullable=False)
    quantity_rejected = Column(Qty, default=0, nullable=False)

    unit_price = Column(Qty, default=0, nullable=False)
    line_amount = Column(Money, default=0, nullable=False)
    tax_rate = Column(Rate, default=0, nullable=False)
    tax_amount = Column(Money, default=0, nullable=False)

    lot_number = Column(String(100), nullable=True)
    serial_number = Column(String(100), nullable=True)
    expiration_date = Column(Date, nullable=True)
    rejection_reason = Column(String(500), nullable=True)

    receipt = relationship("GoodsReceipt", back_populates="lines")
    po_line = relationship("PurchaseOrderLine")
