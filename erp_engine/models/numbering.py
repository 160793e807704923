# erp_engine/models/numbering.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, Date, DateTime, UniqueConstraint
)

from erp_engine.db.base import Base


class Sequence(Base):
    """Named monotonic counter. Read + increment always happens under a row lock."""
    __tablename__ = "sequences"

    name = Column(String(100), primary_key=True)
    current_value = Column(BigInteger, default=1, nullable=False)
    increment_by = Column(Integer, default=1, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class DocumentNumberConfig(Base):
    __tablename__ = "document_number_configs"
    __table_args__ = (
        UniqueConstraint("document_type", name="uq_doc_number_config_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    document_type = Column(String(50), nullable=False, index=True)  # REQUISITION / PURCHASE_ORDER / ...

    prefix = Column(String(30), default="", nullable=False)
    suffix = Column(String(30), default="", nullable=False)
    next_number = Column(BigInteger, default=1, nullable=False)
    padding_width = Column(Integer, default=6, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PONumberTracking(Base):
    """Every PO number handed out by the year-scoped generator, used or not."""
    __tablename__ = "po_number_tracking"

    id = Column(Integer, primary_key=True, index=True)
    po_number = Column(String(50), unique=True, nullable=False, index=True)
    generated_date = Column(Date, nullable=False)
    is_manual = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
