# erp_engine/schemas/inventory.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InventoryItemCreate(BaseModel):
    item_code: str = Field(..., min_length=1, max_length=100)
    item_name: str = Field(..., min_length=1)
    description: str = ""
    uom: str = "EA"
    box_quantity: Decimal = Field(default=Decimal("0"), ge=0)
    packet_quantity: Decimal = Field(default=Decimal("0"), ge=0)


class InventoryItemUpdate(BaseModel):
    item_name: Optional[str] = None
    description: Optional[str] = None
    uom: Optional[str] = None
    box_quantity: Optional[Decimal] = Field(default=None, ge=0)
    packet_quantity: Optional[Decimal] = Field(default=None, ge=0)


class InventoryItemDetailOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    box_quantity: Decimal
    packet_quantity: Decimal
    version: int
    effective_start_date: date
    effective_end_date: Optional[date]
    is_active: bool


class InventoryItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_code: str
    item_name: str
    description: Optional[str]
    uom: Optional[str]
    is_active: bool
    created_at: datetime
    active_detail: Optional[InventoryItemDetailOut] = None
    details: List[InventoryItemDetailOut] = Field(default_factory=list)
