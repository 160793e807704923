# erp_engine/services/goods_receipts.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from erp_engine.core.errors import Conflict, NotFound, ValidationError
from erp_engine.core.money import D, ZERO, money2, qty4
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.procurement import (
    DocStatus,
    GoodsReceipt,
    GoodsReceiptLine,
    PurchaseOrder,
    PurchaseOrderLine,
    ReceiptStatus,
)
from erp_engine.schemas.procurement import ReceiptCreate, ReceiptLineIn, ReceiptUpdate
from erp_engine.services.audit_trail import record_audit, serialize_for_audit
from erp_engine.services.inventory_reconciler import Direction, StockDelta, apply_inventory_batch
from erp_engine.services.numbering import next_sequence_value, resolve_document_number
from erp_engine.services.procurement_lifecycle import compute_totals, rollup_po_status
from erp_engine.services.side_effects import SideEffectResult, report

logger = logging.getLogger(__name__)

DOCUMENT_TYPE = "RECEIPT"
RECEIPT_SEQ = "PO_RECEIPT_ID_SEQ"
RECEIPT_LINE_SEQ = "PO_RECEIPT_LINE_ID_SEQ"

_CLOSED_PO = {DocStatus.CANCELLED.value, DocStatus.CLOSED.value}


def _load_po(db: Session, po_id: int) -> PurchaseOrder:
    po = (
        db.query(PurchaseOrder)
        .options(selectinload(PurchaseOrder.lines))
        .filter(PurchaseOrder.id == po_id)
        .with_for_update()
        .first()
    )
    if not po:
        raise NotFound(f"Purchase order {po_id} not found")
    return po


def _load_receipt(db: Session, receipt_id: int, *, lock: bool = False) -> GoodsReceipt:
    q = db.query(GoodsReceipt).options(selectinload(GoodsReceipt.lines)).filter(GoodsReceipt.id == receipt_id)
    if lock:
        q = q.with_for_update()
    receipt = q.first()
    if not receipt:
        raise NotFound(f"Goods receipt {receipt_id} not found")
    return receipt


def _stock_deltas(lines: List[GoodsReceiptLine], po_lines: Dict[int, PurchaseOrderLine]) -> List[StockDelta]:
    out = []
    for li in lines:
        if not li.item_code or D(li.quantity_accepted) <= 0:
            continue
        pol = po_lines.get(li.po_line_id)
        hint = D(pol.packet_quantity) if pol is not None else None
        out.append(StockDelta(li.item_code, D(li.quantity_accepted), hint))
    return out


def _build_lines(
    db: Session,
    po: PurchaseOrder,
    lines_in: List[ReceiptLineIn],
) -> List[GoodsReceiptLine]:
    """
    Validate receipt quantities against the PO and build the rows.
    PO line cumulatives must already exclude anything this receipt used to hold.
    """
    po_lines = {li.line_id: li for li in po.lines}
    this_receipt: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    out: List[GoodsReceiptLine] = []

    for i, li in enumerate(lines_in, start=1):
        pol = po_lines.get(li.po_line_id)
        if pol is None:
            raise NotFound(
                f"PO line {li.po_line_id} not found on purchase order {po.id}",
                details={"po_line_id": li.po_line_id},
            )

        received = qty4(li.quantity_received)
        rejected = qty4(li.quantity_rejected)
        accepted = qty4(li.quantity_accepted) if li.quantity_accepted is not None else qty4(received - rejected)
        if accepted < 0 or accepted + rejected > received:
            raise ValidationError(
                f"Line {i}: accepted + rejected exceeds received",
                details={"line": i, "received": str(received), "accepted": str(accepted), "rejected": str(rejected)},
            )

        this_receipt[pol.line_id] += received
        cumulative = D(pol.quantity_received) + this_receipt[pol.line_id]
        if cumulative > D(pol.quantity):
            raise ValidationError(
                f"Line {i}: received {cumulative} exceeds ordered {pol.quantity} for PO line {pol.line_id}",
                details={"line": i, "po_line_id": pol.line_id},
            )

        price = D(li.unit_price) if li.unit_price is not None else D(pol.unit_price)
        rate = D(li.tax_rate) if li.tax_rate is not None else D(pol.tax_rate)
        amount = money2(accepted * price)
        tax = money2(amount * rate / Decimal("100"))

        out.append(GoodsReceiptLine(
            line_id=next_sequence_value(db, RECEIPT_LINE_SEQ),
            line_number=i,
            po_line_id=pol.line_id,
            item_code=pol.item_code,
            item_name=pol.item_name,
            uom=pol.uom,
            quantity_ordered=D(pol.quantity),
            quantity_received=received,
            quantity_accepted=accepted,
            quantity_rejected=rejected,
            unit_price=price,
            line_amount=amount,
            tax_rate=rate,
            tax_amount=tax,
            lot_number=li.lot_number,
            serial_number=li.serial_number,
            expiration_date=li.expiration_date,
            rejection_reason=li.rejection_reason,
        ))

    return out


def _post_to_po_lines(po: PurchaseOrder, lines: List[GoodsReceiptLine], sign: int) -> None:
    po_lines = {li.line_id: li for li in po.lines}
    for li in lines:
        pol = po_lines[li.po_line_id]
        pol.quantity_received = qty4(D(pol.quantity_received) + sign * D(li.quantity_received))
        pol.quantity_accepted = qty4(D(pol.quantity_accepted) + sign * D(li.quantity_accepted))


def _recompute_amount_received(db: Session, po: PurchaseOrder) -> None:
    db.flush()
    total = db.execute(
        select(func.coalesce(func.sum(GoodsReceipt.total_amount), 0))
        .where(GoodsReceipt.po_id == po.id, GoodsReceipt.status != ReceiptStatus.CANCELLED.value)
    ).scalar()
    po.amount_received = money2(total)


def _audit(db, caps, actor_id, action, receipt, before=None) -> SideEffectResult:
    return record_audit(
        db,
        caps,
        actor_id=actor_id,
        action=action,
        document_type=DOCUMENT_TYPE,
        document_id=receipt.id,
        old_values=before,
        new_values=serialize_for_audit(receipt, children=("lines",)),
    )


# =========================================================
# Operations
# =========================================================
def create_receipt(
    db: Session,
    caps: SchemaCapabilities,
    payload: ReceiptCreate,
    actor_id: Optional[int],
) -> Tuple[GoodsReceipt, List[SideEffectResult]]:
    po = _load_po(db, payload.po_id)
    if po.status in _CLOSED_PO:
        raise Conflict(f"Purchase order {po.po_number} is {po.status}; nothing can be received")

    receipt_id = next_sequence_value(db, RECEIPT_SEQ)
    number = resolve_document_number(db, DOCUMENT_TYPE, payload.receipt_number, GoodsReceipt.receipt_number)

    lines = _build_lines(db, po, payload.lines)
    subtotal, tax, total = compute_totals(lines)

    receipt = GoodsReceipt(
        id=receipt_id,
        receipt_number=number,
        po_id=po.id,
        supplier_id=po.supplier_id,
        receipt_date=payload.receipt_date or date.today(),
        currency_code=po.currency_code,
        subtotal=subtotal,
        tax_amount=tax,
        total_amount=total,
        status=ReceiptStatus.RECEIVED.value,
        notes=payload.notes,
        created_by=actor_id,
        lines=lines,
    )
    db.add(receipt)

    _post_to_po_lines(po, lines, +1)
    po.amount_received = money2(D(po.amount_received) + total)
    db.flush()

    rollup_po_status(db, po.id)

    po_lines = {li.line_id: li for li in po.lines}
    effects = [
        apply_inventory_batch(db, _stock_deltas(lines, po_lines), Direction.INCREASE),
        _audit(db, caps, actor_id, "CREATE", receipt),
    ]
    logger.info("Goods receipt %s posted against %s (total %s, PO now %s)", number, po.po_number, total, po.status)
    return receipt, report(effects, "create receipt", receipt.id)


def update_receipt(
    db: Session,
    caps: SchemaCapabilities,
    receipt_id: int,
    payload: ReceiptUpdate,
    actor_id: Optional[int],
) -> Tuple[GoodsReceipt, List[SideEffectResult]]:
    receipt = _load_receipt(db, receipt_id, lock=True)
    if receipt.status == ReceiptStatus.CANCELLED.value:
        raise Conflict(f"Goods receipt {receipt.receipt_number} is cancelled")

    po = _load_po(db, receipt.po_id)
    po_lines = {li.line_id: li for li in po.lines}
    before = serialize_for_audit(receipt, children=("lines",))
    effects: List[SideEffectResult] = []

    data = payload.model_dump(exclude_unset=True, exclude={"lines"})
    for field, value in data.items():
        setattr(receipt, field, value)

    if payload.lines is not None:
        old_lines = list(receipt.lines)
        _post_to_po_lines(po, old_lines, -1)
        effects.append(apply_inventory_batch(
            db, _stock_deltas(old_lines, po_lines), Direction.INCREASE, is_reversal=True,
        ))

        receipt.lines.clear()
        db.flush()

        new_lines = _build_lines(db, po, payload.lines)
        receipt.lines.extend(new_lines)
        receipt.subtotal, receipt.tax_amount, receipt.total_amount = compute_totals(new_lines)
        _post_to_po_lines(po, new_lines, +1)
        effects.append(apply_inventory_batch(db, _stock_deltas(new_lines, po_lines), Direction.INCREASE))

    _recompute_amount_received(db, po)
    rollup_po_status(db, po.id)

    effects.append(_audit(db, caps, actor_id, "UPDATE", receipt, before))
    return receipt, report(effects, "update receipt", receipt.id)


def cancel_receipt(
    db: Session,
    caps: SchemaCapabilities,
    receipt_id: int,
    actor_id: Optional[int],
) -> Tuple[GoodsReceipt, List[SideEffectResult]]:
    """Soft delete. Inventory the receipt put on the shelf comes back off first."""
    receipt = _load_receipt(db, receipt_id, lock=True)
    if receipt.status == ReceiptStatus.CANCELLED.value:
        return receipt, []

    po = _load_po(db, receipt.po_id)
    po_lines = {li.line_id: li for li in po.lines}
    before = serialize_for_audit(receipt)

    effects = [apply_inventory_batch(
        db, _stock_deltas(list(receipt.lines), po_lines), Direction.INCREASE, is_reversal=True,
    )]

    _post_to_po_lines(po, list(receipt.lines), -1)
    receipt.status = ReceiptStatus.CANCELLED.value
    _recompute_amount_received(db, po)
    rollup_po_status(db, po.id)

    effects.append(_audit(db, caps, actor_id, "DELETE", receipt, before))
    return receipt, report(effects, "cancel receipt", receipt.id)


def get_receipt(db: Session, receipt_id: int) -> GoodsReceipt:
    return _load_receipt(db, receipt_id)


def list_receipts(
    db: Session,
    *,
    q: Optional[str] = None,
    status: Optional[str] = None,
    po_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    limit: int = 100,
) -> List[GoodsReceipt]:
    query = (
        db.query(GoodsReceipt)
        .options(selectinload(GoodsReceipt.lines))
        .order_by(GoodsReceipt.created_at.desc(), GoodsReceipt.id.desc())
    )
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(GoodsReceipt.receipt_number.ilike(like), GoodsReceipt.notes.ilike(like)))
    if status and status != "ALL":
        query = query.filter(GoodsReceipt.status == status.strip().upper())
    if po_id:
        query = query.filter(GoodsReceipt.po_id == po_id)
    if supplier_id:
        query = query.filter(GoodsReceipt.supplier_id == supplier_id)
    if from_date:
        query = query.filter(GoodsReceipt.created_at >= datetime.combine(from_date, time.min))
    if to_date:
        query = query.filter(GoodsReceipt.created_at <= datetime.combine(to_date, time.max))
    return query.limit(limit).all()
