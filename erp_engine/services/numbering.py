# erp_engine/services/numbering.py
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp_engine.core.config import settings
from erp_engine.core.errors import ConfigNotFound, DuplicateNumber, SequenceNotFound
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.numbering import DocumentNumberConfig, PONumberTracking, Sequence
from erp_engine.models.procurement import PurchaseOrder

logger = logging.getLogger(__name__)


# =========================================================
# Sequences
# =========================================================
def next_sequence_value(db: Session, name: str) -> int:
    """
    Hand out the current value of a named counter and advance it by increment_by.

    The counter row stays locked (SELECT ... FOR UPDATE) until the caller's
    transaction ends, so concurrent callers on the same name queue up behind it.
    """
    row = db.execute(
        select(Sequence).where(Sequence.name == name).with_for_update()
    ).scalar_one_or_none()

    if row is None:
        raise SequenceNotFound(f"Sequence {name} not found", details={"sequence": name})

    value = int(row.current_value)
    row.current_value = value + int(row.increment_by or 1)
    db.flush()
    return value


def register_sequence(db: Session, name: str, start: int = 1, increment_by: int = 1) -> Sequence:
    row = db.get(Sequence, name)
    if row is None:
        row = Sequence(name=name, current_value=start, increment_by=increment_by)
        db.add(row)
        db.flush()
    return row


# =========================================================
# Document numbers
# =========================================================
def format_document_number(prefix: str, number: int, padding_width: int, suffix: str) -> str:
    return f"{prefix or ''}{str(number).zfill(int(padding_width or 0))}{suffix or ''}"


def generate_document_number(db: Session, document_type: str) -> str:
    """Format the next number for an active document type and advance it by one."""
    cfg = db.execute(
        select(DocumentNumberConfig).where(
            DocumentNumberConfig.document_type == document_type,
            DocumentNumberConfig.is_active.is_(True),
        ).with_for_update()
    ).scalar_one_or_none()

    if cfg is None:
        raise ConfigNotFound(
            f"Document number configuration not found for {document_type}",
            details={"document_type": document_type},
        )

    n = int(cfg.next_number or 1)
    number = format_document_number(cfg.prefix, n, cfg.padding_width, cfg.suffix)
    cfg.next_number = n + 1
    db.flush()
    return number


def resolve_document_number(
    db: Session,
    document_type: str,
    supplied: Optional[str],
    number_column,
) -> str:
    """
    Use the caller's number when one is given (the counter is left alone),
    otherwise generate one. Either way the result must not already exist
    in number_column.
    """
    supplied = (supplied or "").strip()
    number = supplied or generate_document_number(db, document_type)

    exists = db.query(number_column).filter(number_column == number).first()
    if exists:
        raise DuplicateNumber(
            f"{document_type} number {number} already exists",
            details={"document_type": document_type, "number": number, "supplied": bool(supplied)},
        )
    return number


# =========================================================
# Year-scoped PO numbers (PO-PK-2025-0001)
# =========================================================
def _used_suffixes(numbers, prefix: str) -> Set[int]:
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    out: Set[int] = set()
    for (value,) in numbers:
        m = pattern.match(value or "")
        if m and int(m.group(1)) > 0:
            out.add(int(m.group(1)))
    return out


def generate_po_number(
    db: Session,
    caps: SchemaCapabilities,
    year: Optional[int] = None,
    base_prefix: Optional[str] = None,
) -> str:
    """
    First free PO-<prefix>-<year>-NNNN across purchase orders and the tracking table.

    The pick is recorded in po_number_tracking. If another request grabbed the
    same number first the insert fails and DuplicateNumber tells the caller to retry.
    """
    year = int(year or date.today().year)
    prefix = f"{base_prefix or settings.PO_NUMBER_PREFIX}-{year}"
    like = f"{prefix}-%"

    used = _used_suffixes(
        db.query(PurchaseOrder.po_number).filter(PurchaseOrder.po_number.like(like)).all(),
        prefix,
    )
    if caps.has_po_number_tracking:
        used |= _used_suffixes(
            db.query(PONumberTracking.po_number).filter(PONumberTracking.po_number.like(like)).all(),
            prefix,
        )

    n = 1
    while n in used:
        n += 1
    po_number = f"{prefix}-{n:04d}"

    if caps.has_po_number_tracking:
        db.add(PONumberTracking(po_number=po_number, generated_date=date.today(), is_manual=False))
        try:
            db.flush()
        except IntegrityError:
            logger.info("PO number %s taken concurrently", po_number)
            raise DuplicateNumber(
                "Generated PO number already exists. Please retry.",
                details={"po_number": po_number},
            )

    return po_number
