# erp_engine/db/capabilities.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Set

from sqlalchemy import inspect
from sqlalchemy.engine import Engine


@dataclass(frozen=True)
class SchemaCapabilities:
    """
    Optional schema pieces, resolved once when the database service opens.
    Services branch on these flags instead of probing tables per request.
    """
    has_po_number_tracking: bool = True
    has_item_detail_versions: bool = True
    has_audit_log: bool = True

    @classmethod
    def resolve(cls, engine: Engine) -> "SchemaCapabilities":
        insp = inspect(engine)
        tables: Set[str] = set(insp.get_table_names())

        detail_versions = False
        if "inventory_item_details" in tables:
            cols = {c["name"] for c in insp.get_columns("inventory_item_details")}
            detail_versions = {"version", "effective_start_date", "effective_end_date"} <= cols

        return cls(
            has_po_number_tracking="po_number_tracking" in tables,
            has_item_detail_versions=detail_versions,
            has_audit_log="audit_logs" in tables,
        )
