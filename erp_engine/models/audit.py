# erp_engine/models/audit.py
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    Index,
)

from erp_engine.db.base import Base


class AuditLog(Base):
    """
    Append-only audit trail.
    Every CREATE / UPDATE / DELETE / STATUS change on a document writes here.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_document", "document_type", "document_id"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)

    actor_id = Column(Integer, nullable=True)  # system jobs may be null
    action = Column(String(30), nullable=False)  # CREATE / UPDATE / DELETE / STATUS_CHANGE

    document_type = Column(String(50), nullable=False)
    document_id = Column(String(100), nullable=False)  # generic pk, stored as string

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
