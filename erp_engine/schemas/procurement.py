# erp_engine/schemas/procurement.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------- lines in ----------------
class DocLineIn(BaseModel):
    item_code: Optional[str] = None
    item_name: str = ""
    description: str = ""
    uom: str = "EA"

    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    # derived from quantity * unit_price / tax_rate when left out
    line_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)


class AgreementLineIn(DocLineIn):
    min_quantity: Optional[Decimal] = None
    max_quantity: Optional[Decimal] = None


class POLineIn(DocLineIn):
    box_quantity: Decimal = Field(default=Decimal("0"), ge=0)
    packet_quantity: Decimal = Field(default=Decimal("0"), ge=0)


# ---------------- headers in ----------------
class _DocHeaderIn(BaseModel):
    description: str = ""
    currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    # taken when numeric, otherwise computed from the lines
    total_amount: Optional[Any] = None
    notes: Optional[str] = None


class RequisitionCreate(_DocHeaderIn):
    requisition_number: Optional[str] = None
    supplier_id: Optional[int] = None
    need_by_date: Optional[date] = None
    lines: List[DocLineIn] = Field(default_factory=list)


class RequisitionUpdate(BaseModel):
    description: Optional[str] = None
    supplier_id: Optional[int] = None
    need_by_date: Optional[date] = None
    currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    total_amount: Optional[Any] = None
    notes: Optional[str] = None
    lines: Optional[List[DocLineIn]] = None


class AgreementCreate(_DocHeaderIn):
    agreement_number: Optional[str] = None
    supplier_id: int
    agreement_type: str = "BLANKET"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    approval_status: Optional[str] = None
    lines: List[AgreementLineIn] = Field(default_factory=list)


class AgreementUpdate(BaseModel):
    description: Optional[str] = None
    supplier_id: Optional[int] = None
    agreement_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    total_amount: Optional[Any] = None
    approval_status: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    lines: Optional[List[AgreementLineIn]] = None


class POCreate(_DocHeaderIn):
    po_number: Optional[str] = None
    supplier_id: int
    requisition_id: Optional[int] = None
    agreement_id: Optional[int] = None
    po_date: Optional[date] = None
    need_by_date: Optional[date] = None
    lines: List[POLineIn] = Field(..., min_length=1)


class POUpdate(BaseModel):
    description: Optional[str] = None
    supplier_id: Optional[int] = None
    po_date: Optional[date] = None
    need_by_date: Optional[date] = None
    currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    total_amount: Optional[Any] = None
    notes: Optional[str] = None
    lines: Optional[List[POLineIn]] = Field(default=None, min_length=1)


# ---------------- goods receipts in ----------------
class ReceiptLineIn(BaseModel):
    po_line_id: int
    quantity_received: Decimal = Field(default=Decimal("0"), ge=0)
    # defaults to received - rejected
    quantity_accepted: Optional[Decimal] = Field(default=None, ge=0)
    quantity_rejected: Decimal = Field(default=Decimal("0"), ge=0)

    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)

    lot_number: Optional[str] = None
    serial_number: Optional[str] = None
    expiration_date: Optional[date] = None
    rejection_reason: Optional[str] = None


class ReceiptCreate(BaseModel):
    receipt_number: Optional[str] = None
    po_id: int
    receipt_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[ReceiptLineIn] = Field(..., min_length=1)


class ReceiptUpdate(BaseModel):
    receipt_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[ReceiptLineIn]] = Field(default=None, min_length=1)


class PONumberOut(BaseModel):
    po_number: str
    year: int


# ---------------- out ----------------
class DocLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_id: int
    line_number: int
    item_code: Optional[str]
    item_name: Optional[str]
    description: Optional[str]
    uom: Optional[str]
    quantity: Decimal
    unit_price: Decimal
    line_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal


class AgreementLineOut(DocLineOut):
    min_quantity: Optional[Decimal] = None
    max_quantity: Optional[Decimal] = None


class POLineOut(DocLineOut):
    box_quantity: Decimal
    packet_quantity: Decimal
    quantity_received: Decimal
    quantity_accepted: Decimal


class _DocHeaderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: Optional[str]
    currency_code: str
    exchange_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    approval_status: str
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    notes: Optional[str]
    created_by: Optional[int]
    created_at: datetime
    updated_at: datetime


class RequisitionOut(_DocHeaderOut):
    requisition_number: str
    supplier_id: Optional[int]
    need_by_date: Optional[date]
    lines: List[DocLineOut] = Field(default_factory=list)


class AgreementOut(_DocHeaderOut):
    agreement_number: str
    supplier_id: int
    agreement_type: Optional[str]
    start_date: Optional[date]
    end_date: Optional[date]
    lines: List[AgreementLineOut] = Field(default_factory=list)


class POOut(_DocHeaderOut):
    po_number: str
    supplier_id: int
    requisition_id: Optional[int]
    agreement_id: Optional[int]
    po_date: Optional[date]
    need_by_date: Optional[date]
    amount_received: Decimal
    lines: List[POLineOut] = Field(default_factory=list)


class ReceiptLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_id: int
    line_number: int
    po_line_id: int
    item_code: Optional[str]
    item_name: Optional[str]
    quantity_ordered: Decimal
    quantity_received: Decimal
    quantity_accepted: Decimal
    quantity_rejected: Decimal
    unit_price: Decimal
    line_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    lot_number: Optional[str]
    serial_number: Optional[str]
    expiration_date: Optional[date]
    rejection_reason: Optional[str]


class ReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    receipt_number: str
    po_id: int
    supplier_id: Optional[int]
    receipt_date: Optional[date]
    currency_code: str
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    notes: Optional[str]
    created_by: Optional[int]
    created_at: datetime
    lines: List[ReceiptLineOut] = Field(default_factory=list)
