# erp_engine/schemas/invoices.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _InvoiceHeaderIn(BaseModel):
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    status: Optional[str] = None
    notes: Optional[str] = None


class APInvoiceCreate(_InvoiceHeaderIn):
    supplier_id: int
    po_id: Optional[int] = None
    subtotal: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    total_amount: Optional[Decimal] = Field(default=None, ge=0)


class ARInvoiceLineIn(BaseModel):
    item_code: Optional[str] = None
    item_name: str = "Item"
    description: str = ""
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    line_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)


class ARInvoiceCreate(_InvoiceHeaderIn):
    customer_id: int
    lines: List[ARInvoiceLineIn] = Field(default_factory=list)


class ARInvoiceUpdate(BaseModel):
    invoice_number: Optional[str] = None
    customer_id: Optional[int] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = None
    lines: Optional[List[ARInvoiceLineIn]] = None


class ARInvoiceLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_id: int
    line_number: int
    item_code: Optional[str]
    item_name: Optional[str]
    description: Optional[str]
    quantity: Decimal
    unit_price: Decimal
    line_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal


class _InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: Optional[str]
    invoice_date: Optional[date]
    due_date: Optional[date]
    currency_code: str
    exchange_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    status: str
    approval_status: str
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class APInvoiceOut(_InvoiceOut):
    supplier_id: int
    po_id: Optional[int]


class ARInvoiceOut(_InvoiceOut):
    customer_id: int
    lines: List[ARInvoiceLineOut] = Field(default_factory=list)
