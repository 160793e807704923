# erp_engine/schemas/settlement.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ApplicationIn(BaseModel):
    invoice_id: int
    applied_amount: Decimal = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("applied_amount", "application_amount"),
    )
    application_date: Optional[date] = None
    notes: Optional[str] = None


class _SettlementIn(BaseModel):
    currency_code: Optional[str] = None
    payment_method: Optional[str] = None
    bank_account: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    applications: List[ApplicationIn] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, v):
        return str(v).strip().upper() if v else None


class APPaymentCreate(_SettlementIn):
    payment_number: Optional[str] = None
    supplier_id: int
    payment_date: date
    payment_amount: Decimal = Field(..., gt=0)


class ARReceiptCreate(_SettlementIn):
    receipt_number: Optional[str] = None
    customer_id: int
    receipt_date: date
    receipt_amount: Decimal = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("receipt_amount", "total_amount", "amount_received"),
    )


class APPaymentUpdate(BaseModel):
    payment_number: Optional[str] = None
    supplier_id: Optional[int] = None
    payment_date: Optional[date] = None
    payment_amount: Optional[Decimal] = Field(default=None, gt=0)
    currency_code: Optional[str] = None
    payment_method: Optional[str] = None
    bank_account: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    applications: Optional[List[ApplicationIn]] = None

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, v):
        return str(v).strip().upper() if v else None


class ARReceiptUpdate(BaseModel):
    receipt_number: Optional[str] = None
    customer_id: Optional[int] = None
    receipt_date: Optional[date] = None
    receipt_amount: Optional[Decimal] = Field(default=None, gt=0)
    currency_code: Optional[str] = None
    payment_method: Optional[str] = None
    bank_account: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    applications: Optional[List[ApplicationIn]] = None

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, v):
        return str(v).strip().upper() if v else None


class DraftConflictQuery(BaseModel):
    invoice_ids: List[int] = Field(default_factory=list)
    exclude_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("exclude_id", "exclude_payment_id", "exclude_receipt_id"),
    )


class DraftConflictOut(BaseModel):
    invoice_id: int
    invoice_number: Optional[str]
    document_id: int
    document_number: Optional[str]


# ---------------- out ----------------
class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    applied_amount: Decimal
    unapplied_amount: Decimal
    application_date: date
    status: str
    notes: Optional[str]
    created_at: datetime


class _SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    currency_code: str
    amount_applied: Decimal
    unapplied_amount: Decimal
    payment_method: Optional[str]
    bank_account: Optional[str]
    reference_number: Optional[str]
    status: str
    notes: Optional[str]
    created_by: Optional[int]
    created_at: datetime
    updated_at: datetime
    applications: List[ApplicationOut] = Field(default_factory=list)


class APPaymentOut(_SettlementOut):
    payment_number: Optional[str]
    supplier_id: int
    payment_date: date
    payment_amount: Decimal


class ARReceiptOut(_SettlementOut):
    receipt_number: Optional[str]
    customer_id: int
    receipt_date: date
    receipt_amount: Decimal


class PromoteIn(BaseModel):
    """DRAFT -> PAID. Without applications the draft's own ACTIVE ones are re-applied."""
    applications: Optional[List[ApplicationIn]] = None
