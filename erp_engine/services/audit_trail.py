# erp_engine/services/audit_trail.py
from __future__ import annotations

import enum
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.audit import AuditLog
from erp_engine.services.side_effects import SideEffectResult

logger = logging.getLogger(__name__)


def _scalar(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return str(value)


def serialize_for_audit(obj: Any, *, children: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    """
    Snapshot an ORM row as a flat JSON-safe dict of its mapped columns.
    Relationship collections are only included when named in children.
    """
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {k: _scalar(v) for k, v in obj.items()}

    mapper = sa_inspect(obj).mapper
    out: Dict[str, Any] = {attr.key: _scalar(getattr(obj, attr.key)) for attr in mapper.column_attrs}
    for name in children:
        out[name] = [serialize_for_audit(child) for child in (getattr(obj, name) or [])]
    return out


def record_audit(
    db: Session,
    caps: SchemaCapabilities,
    *,
    actor_id: Optional[int],
    action: str,  # "CREATE" | "UPDATE" | "DELETE" | "STATUS_CHANGE"
    document_type: str,
    document_id: Any,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> SideEffectResult:
    """
    Append one audit entry inside a savepoint.
    A failed write is logged and reported, never raised.
    """
    if not caps.has_audit_log:
        return SideEffectResult.skip("audit", "audit_logs table not present")

    try:
        with db.begin_nested():
            db.add(AuditLog(
                actor_id=actor_id,
                action=action,
                document_type=document_type,
                document_id=str(document_id),
                old_values=old_values,
                new_values=new_values,
            ))
    except Exception as exc:
        logger.exception("Failed to log audit %s %s %s", action, document_type, document_id)
        return SideEffectResult.failure("audit", exc, action=action, document_type=document_type)

    return SideEffectResult.success("audit", action=action, document_type=document_type)
