# erp_engine/services/procurement_lifecycle.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from erp_engine.core.config import settings
from erp_engine.core.errors import Conflict, InvalidStatus, NotFound, ValidationError
from erp_engine.core.money import D, ZERO, money2, parse_decimal, qty4
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.numbering import PONumberTracking
from erp_engine.models.party import Supplier
from erp_engine.models.procurement import (
    Agreement,
    AgreementLine,
    ApprovalStatus,
    DocStatus,
    GoodsReceipt,
    GoodsReceiptLine,
    PurchaseOrder,
    PurchaseOrderLine,
    ReceiptStatus,
    Requisition,
    RequisitionLine,
)
from erp_engine.schemas.common import StatusPatch
from erp_engine.services.audit_trail import record_audit, serialize_for_audit
from erp_engine.services.numbering import next_sequence_value, resolve_document_number
from erp_engine.services.side_effects import SideEffectResult, report

logger = logging.getLogger(__name__)

DOC_STATUSES = [s.value for s in DocStatus]
APPROVAL_STATUSES = [s.value for s in ApprovalStatus]
_LOCKED_STATUSES = {DocStatus.CANCELLED.value, DocStatus.CLOSED.value}


@dataclass(frozen=True)
class DocumentKind:
    document_type: str
    model: Any
    line_model: Any
    number_field: str
    header_seq: str
    line_seq: str
    line_extra: Tuple[str, ...] = ()
    supplier_required: bool = True


REQUISITION = DocumentKind(
    document_type="REQUISITION",
    model=Requisition,
    line_model=RequisitionLine,
    number_field="requisition_number",
    header_seq="PO_REQUISITION_ID_SEQ",
    line_seq="PO_LINE_ID_SEQ",
    supplier_required=False,
)
AGREEMENT = DocumentKind(
    document_type="AGREEMENT",
    model=Agreement,
    line_model=AgreementLine,
    number_field="agreement_number",
    header_seq="PO_AGREEMENT_ID_SEQ",
    line_seq="PO_AGREEMENT_LINE_ID_SEQ",
    line_extra=("min_quantity", "max_quantity"),
)
PURCHASE_ORDER = DocumentKind(
    document_type="PURCHASE_ORDER",
    model=PurchaseOrder,
    line_model=PurchaseOrderLine,
    number_field="po_number",
    header_seq="PO_HEADER_ID_SEQ",
    line_seq="PO_LINE_ID_SEQ",
    line_extra=("box_quantity", "packet_quantity"),
)


# =========================================================
# Amounts
# =========================================================
def compute_line(li) -> dict:
    qty = qty4(li.quantity)
    price = D(li.unit_price)
    rate = D(li.tax_rate)

    amount = money2(li.line_amount) if li.line_amount is not None else money2(qty * price)
    tax = money2(li.tax_amount) if li.tax_amount is not None else money2(amount * rate / Decimal("100"))

    return {
        "item_code": (li.item_code or "").strip() or None,
        "item_name": li.item_name or "",
        "description": li.description or "",
        "uom": li.uom or "EA",
        "quantity": qty,
        "unit_price": D(li.unit_price),
        "line_amount": amount,
        "tax_rate": rate,
        "tax_amount": tax,
    }


def compute_totals(lines: Iterable[Any]) -> Tuple[Decimal, Decimal, Decimal]:
    subtotal = ZERO
    tax = ZERO
    for li in lines:
        subtotal += D(li.line_amount)
        tax += D(li.tax_amount)
    subtotal = money2(subtotal)
    tax = money2(tax)
    return subtotal, tax, money2(subtotal + tax)


def resolve_totals(supplied: Any, lines: List[Any]) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Header totals. A numeric supplied total is used when there are no lines and
    must agree with the lines (within 0.01) when there are.
    Non-numeric or absent totals fall back to the line sums.
    """
    subtotal, tax, total = compute_totals(lines)
    given = parse_decimal(supplied)
    if given is None:
        return subtotal, tax, total

    given = money2(given)
    if not lines:
        return given, ZERO, given
    if abs(given - total) > settings.PAID_TOLERANCE:
        raise ValidationError(
            f"total_amount {given} does not match line total {total}",
            details={"total_amount": str(given), "computed": str(total)},
        )
    return subtotal, tax, total


# =========================================================
# Helpers
# =========================================================
def ensure_supplier(db: Session, supplier_id: Optional[int]) -> None:
    if supplier_id is None:
        return
    if not db.query(Supplier.id).filter(Supplier.id == supplier_id).first():
        raise NotFound(f"Supplier with ID {supplier_id} not found", details={"supplier_id": supplier_id})


def apply_approval(doc, approval_status: str, actor_id: Optional[int]) -> None:
    if approval_status not in APPROVAL_STATUSES:
        raise InvalidStatus(
            f"Invalid approval_status value '{approval_status}'. Must be one of: {', '.join(APPROVAL_STATUSES)}"
        )
    doc.approval_status = approval_status
    if approval_status == ApprovalStatus.APPROVED.value:
        doc.approved_by = actor_id
        doc.approved_at = datetime.utcnow()
    else:
        doc.approved_by = None
        doc.approved_at = None


def _build_lines(db: Session, kind: DocumentKind, lines_in) -> list:
    out = []
    for i, li in enumerate(lines_in, start=1):
        values = compute_line(li)
        for name in kind.line_extra:
            values[name] = getattr(li, name)
        out.append(kind.line_model(line_id=next_sequence_value(db, kind.line_seq), line_number=i, **values))
    return out


def _load(db: Session, kind: DocumentKind, doc_id: int, *, lock: bool = False):
    q = db.query(kind.model).options(selectinload(kind.model.lines)).filter(kind.model.id == doc_id)
    if lock:
        q = q.with_for_update()
    doc = q.first()
    if not doc:
        raise NotFound(f"{kind.document_type.replace('_', ' ').title()} {doc_id} not found")
    return doc


def _ensure_references(db: Session, kind: DocumentKind, data: dict) -> None:
    if kind.supplier_required and "supplier_id" in data and data["supplier_id"] is None:
        raise ValidationError("supplier_id is required")
    ensure_supplier(db, data.get("supplier_id"))

    if data.get("requisition_id") is not None and not db.get(Requisition, data["requisition_id"]):
        raise NotFound(f"Requisition {data['requisition_id']} not found")
    if data.get("agreement_id") is not None and not db.get(Agreement, data["agreement_id"]):
        raise NotFound(f"Agreement {data['agreement_id']} not found")


def _audit(db, caps, actor_id, action, kind, doc, before=None) -> SideEffectResult:
    return record_audit(
        db,
        caps,
        actor_id=actor_id,
        action=action,
        document_type=kind.document_type,
        document_id=doc.id,
        old_values=before,
        new_values=serialize_for_audit(doc, children=("lines",)),
    )


# =========================================================
# Create / update / status / cancel
# =========================================================
def create_document(
    db: Session,
    caps: SchemaCapabilities,
    kind: DocumentKind,
    payload,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    data = payload.model_dump(exclude={"lines", "total_amount", "approval_status", kind.number_field})
    _ensure_references(db, kind, data)

    doc_id = next_sequence_value(db, kind.header_seq)
    supplied_number = getattr(payload, kind.number_field)
    number = resolve_document_number(db, kind.document_type, supplied_number, getattr(kind.model, kind.number_field))

    data["currency_code"] = data.get("currency_code") or settings.DEFAULT_CURRENCY
    data["exchange_rate"] = data.get("exchange_rate") or Decimal("1")
    if kind is AGREEMENT:
        data["start_date"] = data.get("start_date") or date.today()
        data["end_date"] = data.get("end_date") or data["start_date"] + timedelta(days=settings.AGREEMENT_DEFAULT_DAYS)
    if kind is PURCHASE_ORDER:
        data["po_date"] = data.get("po_date") or date.today()

    doc = kind.model(
        id=doc_id,
        status=DocStatus.DRAFT.value,
        approval_status=ApprovalStatus.PENDING.value,
        created_by=actor_id,
        **{kind.number_field: number},
        **data,
    )
    approval = getattr(payload, "approval_status", None)
    if approval:
        apply_approval(doc, approval.strip().upper(), actor_id)

    doc.lines = _build_lines(db, kind, payload.lines)
    doc.subtotal, doc.tax_amount, doc.total_amount = resolve_totals(payload.total_amount, doc.lines)

    db.add(doc)
    if kind is PURCHASE_ORDER and supplied_number and caps.has_po_number_tracking:
        tracked = db.query(PONumberTracking.id).filter(PONumberTracking.po_number == number).first()
        if not tracked:
            db.add(PONumberTracking(po_number=number, generated_date=date.today(), is_manual=True))
    db.flush()

    effects = [_audit(db, caps, actor_id, "CREATE", kind, doc)]
    logger.info("%s %s created (%s lines, total %s)", kind.document_type, number, len(doc.lines), doc.total_amount)
    return doc, report(effects, f"create {kind.document_type}", doc.id)


def update_document(
    db: Session,
    caps: SchemaCapabilities,
    kind: DocumentKind,
    doc_id: int,
    payload,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    doc = _load(db, kind, doc_id, lock=True)
    if doc.status in _LOCKED_STATUSES:
        raise Conflict(f"{kind.document_type} {doc_id} is {doc.status} and cannot be edited")

    before = serialize_for_audit(doc, children=("lines",))
    data = payload.model_dump(exclude_unset=True, exclude={"lines", "total_amount", "approval_status", "status"})
    _ensure_references(db, kind, data)

    for field, value in data.items():
        setattr(doc, field, value)

    approval = getattr(payload, "approval_status", None)
    if approval:
        apply_approval(doc, approval.strip().upper(), actor_id)

    status = getattr(payload, "status", None)
    if status:
        status = status.strip().upper()
        if status not in DOC_STATUSES:
            raise InvalidStatus(f"Invalid status value '{status}'. Must be one of: {', '.join(DOC_STATUSES)}")
        doc.status = status

    if payload.lines is not None:
        if kind is PURCHASE_ORDER and db.query(GoodsReceipt.id).filter(GoodsReceipt.po_id == doc.id).first():
            raise Conflict(f"Purchase order {doc_id} has receipts; its lines cannot be replaced")
        doc.lines.clear()
        db.flush()
        doc.lines.extend(_build_lines(db, kind, payload.lines))

    if payload.lines is not None or payload.total_amount is not None:
        doc.subtotal, doc.tax_amount, doc.total_amount = resolve_totals(payload.total_amount, list(doc.lines))
    db.flush()

    effects = [_audit(db, caps, actor_id, "UPDATE", kind, doc, before)]
    return doc, report(effects, f"update {kind.document_type}", doc.id)


def patch_status(
    db: Session,
    caps: SchemaCapabilities,
    kind: DocumentKind,
    doc_id: int,
    patch: StatusPatch,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    if not patch.status and not patch.approval_status:
        raise ValidationError("No status fields provided")
    if patch.status and patch.status not in DOC_STATUSES:
        raise InvalidStatus(
            f"Invalid status value '{patch.status}'. Must be one of: {', '.join(DOC_STATUSES)}"
        )

    doc = _load(db, kind, doc_id, lock=True)
    if doc.status in _LOCKED_STATUSES:
        raise Conflict(f"{kind.document_type} {doc_id} is {doc.status}; its status can no longer change")
    before = serialize_for_audit(doc)

    if patch.status:
        doc.status = patch.status
    if patch.approval_status:
        apply_approval(doc, patch.approval_status, actor_id)
    db.flush()

    effects = [_audit(db, caps, actor_id, "STATUS_CHANGE", kind, doc, before)]
    return doc, report(effects, f"status {kind.document_type}", doc.id)


def cancel_document(
    db: Session,
    caps: SchemaCapabilities,
    kind: DocumentKind,
    doc_id: int,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    doc = _load(db, kind, doc_id, lock=True)
    if doc.status == DocStatus.CANCELLED.value:
        return doc, []
    if doc.status == DocStatus.CLOSED.value:
        raise Conflict(f"{kind.document_type} {doc_id} is CLOSED and cannot be cancelled")
    before = serialize_for_audit(doc)
    doc.status = DocStatus.CANCELLED.value
    db.flush()

    effects = [_audit(db, caps, actor_id, "DELETE", kind, doc, before)]
    return doc, report(effects, f"cancel {kind.document_type}", doc.id)


def add_document_line(
    db: Session,
    caps: SchemaCapabilities,
    kind: DocumentKind,
    doc_id: int,
    line_in,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    """Append one line (own line id, next line number) and refresh the header totals."""
    doc = _load(db, kind, doc_id, lock=True)
    if doc.status in _LOCKED_STATUSES:
        raise Conflict(f"{kind.document_type} {doc_id} is {doc.status} and cannot be edited")
    before = serialize_for_audit(doc, children=("lines",))

    values = compute_line(line_in)
    for name in kind.line_extra:
        values[name] = getattr(line_in, name)
    line_number = max((li.line_number for li in doc.lines), default=0) + 1
    line = kind.line_model(line_id=next_sequence_value(db, kind.line_seq), line_number=line_number, **values)
    doc.lines.append(line)
    doc.subtotal, doc.tax_amount, doc.total_amount = compute_totals(doc.lines)
    db.flush()

    effects = [_audit(db, caps, actor_id, "UPDATE", kind, doc, before)]
    logger.info("%s %s: line %s added", kind.document_type, doc_id, line_number)
    return line, report(effects, f"add line {kind.document_type}", doc.id)


# =========================================================
# Reads
# =========================================================
def get_document(db: Session, kind: DocumentKind, doc_id: int):
    return _load(db, kind, doc_id)


def list_document_lines(db: Session, kind: DocumentKind, doc_id: int) -> list:
    return list(_load(db, kind, doc_id).lines)


def list_documents(
    db: Session,
    kind: DocumentKind,
    *,
    q: Optional[str] = None,
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    limit: int = 100,
) -> list:
    model = kind.model
    query = db.query(model).options(selectinload(model.lines)).order_by(model.created_at.desc(), model.id.desc())

    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(getattr(model, kind.number_field).ilike(like), model.description.ilike(like)))
    if status and status != "ALL":
        query = query.filter(model.status == status.strip().upper())
    if supplier_id:
        query = query.filter(model.supplier_id == supplier_id)
    if from_date:
        query = query.filter(model.created_at >= datetime.combine(from_date, time.min))
    if to_date:
        query = query.filter(model.created_at <= datetime.combine(to_date, time.max))

    return query.limit(limit).all()


# =========================================================
# PO status rollup
# =========================================================
def rollup_po_status(db: Session, po_id: int) -> Optional[str]:
    """
    Derive a PO's receiving status from its lines and live receipts.

    ordered <= 0          -> unchanged
    accepted >= ordered   -> CLOSED
    received > 0          -> RECEIVED
    nothing received      -> a RECEIVED/CLOSED PO drops back to RELEASED
    CANCELLED is never touched. Running it twice gives the same answer.
    """
    po = db.get(PurchaseOrder, po_id)
    if po is None:
        raise NotFound(f"Purchase order {po_id} not found")
    if po.status == DocStatus.CANCELLED.value:
        return po.status

    # separate aggregates; joining lines to receipt lines would double count
    ordered = D(db.execute(
        select(func.coalesce(func.sum(PurchaseOrderLine.quantity), 0))
        .where(PurchaseOrderLine.po_id == po_id)
    ).scalar())
    received, accepted = db.execute(
        select(
            func.coalesce(func.sum(GoodsReceiptLine.quantity_received), 0),
            func.coalesce(func.sum(GoodsReceiptLine.quantity_accepted), 0),
        )
        .join(GoodsReceipt, GoodsReceipt.id == GoodsReceiptLine.receipt_id)
        .where(GoodsReceipt.po_id == po_id, GoodsReceipt.status != ReceiptStatus.CANCELLED.value)
    ).one()
    received, accepted = D(received), D(accepted)

    if ordered <= 0:
        return po.status

    if accepted >= ordered:
        po.status = DocStatus.CLOSED.value
    elif received > 0:
        po.status = DocStatus.RECEIVED.value
    elif po.status in {DocStatus.RECEIVED.value, DocStatus.CLOSED.value}:
        po.status = DocStatus.RELEASED.value

    db.flush()
    return po.status
