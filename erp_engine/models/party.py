# erp_engine/models/party.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime

from erp_engine.db.base import Base


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    supplier_number = Column(String(50), unique=True, nullable=False, index=True)
    supplier_name = Column(String(255), nullable=False)
    status = Column(String(20), default="ACTIVE", nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    customer_number = Column(String(50), unique=True, nullable=False, index=True)
    customer_name = Column(String(255), nullable=False)
    status = Column(String(20), default="ACTIVE", nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
