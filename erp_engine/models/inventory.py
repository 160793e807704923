# erp_engine/models/inventory.py
from __future__ import annotations

from datetime import datetime, date

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from erp_engine.db.base import Base

Boxes = Numeric(14, 2)
Qty = Numeric(14, 4)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True)
    item_code = Column(String(100), unique=True, nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    description = Column(String(1000), default="")
    uom = Column(String(30), default="EA")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    details = relationship(
        "InventoryItemDetail",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="InventoryItemDetail.version",
    )

    @property
    def active_detail(self):
        for d in self.details or []:
            if d.is_active and d.effective_end_date is None:
                return d
        return None


class InventoryItemDetail(Base):
    """
    Versioned stock attributes. One active row per item.
    packet_quantity is packets-per-box; total units = box_quantity * packet_quantity.
    """
    __tablename__ = "inventory_item_details"
    __table_args__ = (
        Index("ix_item_detail_item_active", "inventory_item_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False)

    box_quantity = Column(Boxes, default=0, nullable=False)
    packet_quantity = Column(Qty, default=0, nullable=False)

    version = Column(Integer, default=1, nullable=False)
    effective_start_date = Column(Date, default=date.today, nullable=False)
    effective_end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    item = relationship("InventoryItem", back_populates="details")
