# erp_engine/services/invoices.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from erp_engine.core.config import settings
from erp_engine.core.errors import Conflict, DuplicateNumber, InvalidStatus, NotFound, ValidationError
from erp_engine.core.money import D, ZERO, money2, qty4
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.invoices import APInvoice, ARInvoice, ARInvoiceLine, InvoiceStatus
from erp_engine.models.party import Customer, Supplier
from erp_engine.models.procurement import PurchaseOrder
from erp_engine.schemas.common import StatusPatch
from erp_engine.schemas.invoices import APInvoiceCreate, ARInvoiceCreate, ARInvoiceUpdate
from erp_engine.services.audit_trail import record_audit, serialize_for_audit
from erp_engine.services.inventory_reconciler import Direction, StockDelta, apply_inventory_batch
from erp_engine.services.invoice_balances import repair_status
from erp_engine.services.numbering import next_sequence_value
from erp_engine.services.procurement_lifecycle import APPROVAL_STATUSES, compute_totals
from erp_engine.services.side_effects import SideEffectResult, report

logger = logging.getLogger(__name__)

INVOICE_STATUSES = [s.value for s in InvoiceStatus]
_INACTIVE = {InvoiceStatus.CANCELLED.value, InvoiceStatus.VOID.value}

AR_INVOICE_SEQ = "AR_INVOICE_ID_SEQ"
AR_INVOICE_LINE_SEQ = "AR_INVOICE_LINE_ID_SEQ"


def _check_status(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().upper()
    if value not in INVOICE_STATUSES:
        raise InvalidStatus(f"Invalid status value '{value}'. Must be one of: {', '.join(INVOICE_STATUSES)}")
    return value


def _check_approval(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().upper()
    if value not in APPROVAL_STATUSES:
        raise InvalidStatus(
            f"Invalid approval_status value '{value}'. Must be one of: {', '.join(APPROVAL_STATUSES)}"
        )
    return value


def _ensure_unique_number(db: Session, model, number: Optional[str], exclude_id: Optional[int] = None) -> None:
    if not number:
        return
    q = db.query(model.id).filter(model.invoice_number == number)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    if q.first():
        raise DuplicateNumber(f"Invoice number {number} already exists", details={"number": number})


def _audit(db, caps, actor_id, action, document_type, invoice, before=None, children=()) -> SideEffectResult:
    return record_audit(
        db,
        caps,
        actor_id=actor_id,
        action=action,
        document_type=document_type,
        document_id=invoice.id,
        old_values=before,
        new_values=serialize_for_audit(invoice, children=children),
    )


# =========================================================
# AR invoices (sales: stock goes out)
# =========================================================
def _build_ar_lines(db: Session, lines_in) -> List[ARInvoiceLine]:
    out = []
    for i, li in enumerate(lines_in, start=1):
        qty = qty4(li.quantity)
        amount = money2(li.line_amount) if li.line_amount is not None else money2(qty * D(li.unit_price))
        tax = money2(li.tax_amount) if li.tax_amount is not None else money2(amount * D(li.tax_rate) / Decimal("100"))
        out.append(ARInvoiceLine(
            line_id=next_sequence_value(db, AR_INVOICE_LINE_SEQ),
            line_number=i,
            item_code=(li.item_code or "").strip() or None,
            item_name=li.item_name or "Item",
            description=li.description or "",
            quantity=qty,
            unit_price=D(li.unit_price),
            line_amount=amount,
            tax_rate=D(li.tax_rate),
            tax_amount=tax,
        ))
    return out


def _sold(lines: List[ARInvoiceLine]) -> List[StockDelta]:
    return [StockDelta(li.item_code, D(li.quantity)) for li in lines if li.item_code and D(li.quantity) > 0]


def _load_ar(db: Session, invoice_id: int, *, lock: bool = False) -> ARInvoice:
    q = db.query(ARInvoice).options(selectinload(ARInvoice.lines)).filter(ARInvoice.id == invoice_id)
    if lock:
        q = q.with_for_update()
    invoice = q.first()
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


def create_ar_invoice(
    db: Session,
    caps: SchemaCapabilities,
    payload: ARInvoiceCreate,
    actor_id: Optional[int],
) -> Tuple[ARInvoice, List[SideEffectResult]]:
    if not db.get(Customer, payload.customer_id):
        raise NotFound(f"Customer with ID {payload.customer_id} not found")
    _ensure_unique_number(db, ARInvoice, payload.invoice_number)
    status = _check_status(payload.status) or InvoiceStatus.DRAFT.value

    invoice = ARInvoice(
        id=next_sequence_value(db, AR_INVOICE_SEQ),
        invoice_number=payload.invoice_number,
        customer_id=payload.customer_id,
        invoice_date=payload.invoice_date or date.today(),
        due_date=payload.due_date,
        currency_code=payload.currency_code or settings.DEFAULT_CURRENCY,
        exchange_rate=payload.exchange_rate or Decimal("1"),
        amount_paid=ZERO,
        status=status,
        notes=payload.notes,
        created_by=actor_id,
    )
    invoice.lines = _build_ar_lines(db, payload.lines)
    invoice.subtotal, invoice.tax_amount, invoice.total_amount = compute_totals(invoice.lines)
    db.add(invoice)
    db.flush()

    effects = []
    if status not in _INACTIVE:
        effects.append(apply_inventory_batch(db, _sold(invoice.lines), Direction.DECREASE))
    effects.append(_audit(db, caps, actor_id, "CREATE", "AR_INVOICE", invoice, children=("lines",)))
    return invoice, report(effects, "create AR invoice", invoice.id)


def update_ar_invoice(
    db: Session,
    caps: SchemaCapabilities,
    invoice_id: int,
    payload: ARInvoiceUpdate,
    actor_id: Optional[int],
) -> Tuple[ARInvoice, List[SideEffectResult]]:
    invoice = _load_ar(db, invoice_id, lock=True)
    if invoice.status in _INACTIVE:
        raise Conflict(f"Invoice {invoice_id} is {invoice.status} and cannot be edited")

    data = payload.model_dump(exclude_unset=True, exclude={"lines"})
    if data.get("customer_id") is not None and not db.get(Customer, data["customer_id"]):
        raise NotFound(f"Customer with ID {data['customer_id']} not found")
    if data.get("invoice_number"):
        _ensure_unique_number(db, ARInvoice, data["invoice_number"], exclude_id=invoice.id)

    before = serialize_for_audit(invoice, children=("lines",))
    for field, value in data.items():
        setattr(invoice, field, value)

    effects: List[SideEffectResult] = []
    if payload.lines is not None:
        effects.append(apply_inventory_batch(db, _sold(list(invoice.lines)), Direction.DECREASE, is_reversal=True))
        invoice.lines.clear()
        db.flush()
        invoice.lines.extend(_build_ar_lines(db, payload.lines))
        invoice.subtotal, invoice.tax_amount, invoice.total_amount = compute_totals(invoice.lines)
        if D(invoice.total_amount) < D(invoice.amount_paid):
            raise ValidationError(
                f"Invoice total {invoice.total_amount} would fall below amount already paid {invoice.amount_paid}"
            )
        effects.append(apply_inventory_batch(db, _sold(invoice.lines), Direction.DECREASE))

    repair_status(invoice)
    db.flush()

    effects.append(_audit(db, caps, actor_id, "UPDATE", "AR_INVOICE", invoice, before, children=("lines",)))
    return invoice, report(effects, "update AR invoice", invoice.id)


def patch_ar_invoice_status(
    db: Session,
    caps: SchemaCapabilities,
    invoice_id: int,
    patch: StatusPatch,
    actor_id: Optional[int],
) -> Tuple[ARInvoice, List[SideEffectResult]]:
    """
    CANCELLED / VOID put the sold stock back; leaving them takes it out again.
    """
    status = _check_status(patch.status)
    approval = _check_approval(patch.approval_status)
    if not status and not approval:
        raise ValidationError("No status fields provided")

    invoice = _load_ar(db, invoice_id, lock=True)
    before = serialize_for_audit(invoice)
    old_status = invoice.status

    if status:
        invoice.status = status
        # OPEN / PAID always follow the balance
        repair_status(invoice)
    if approval:
        invoice.approval_status = approval
    db.flush()

    effects: List[SideEffectResult] = []
    if status and status != old_status:
        if status in _INACTIVE and old_status not in _INACTIVE:
            effects.append(apply_inventory_batch(db, _sold(list(invoice.lines)), Direction.DECREASE, is_reversal=True))
        elif old_status in _INACTIVE and status not in _INACTIVE:
            effects.append(apply_inventory_batch(db, _sold(list(invoice.lines)), Direction.DECREASE))

    effects.append(_audit(db, caps, actor_id, "STATUS_CHANGE", "AR_INVOICE", invoice, before))
    return invoice, report(effects, "status AR invoice", invoice.id)


def get_ar_invoice(db: Session, invoice_id: int) -> ARInvoice:
    invoice = _load_ar(db, invoice_id)
    if repair_status(invoice):
        db.flush()
    return invoice


def _list_invoices(db, model, party_col, *, q, status, party_id, from_date, to_date, limit, options=()):
    query = db.query(model).options(*options).order_by(model.created_at.desc(), model.id.desc())
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(model.invoice_number.ilike(like), model.notes.ilike(like)))
    if status and status != "ALL":
        query = query.filter(model.status == status.strip().upper())
    if party_id:
        query = query.filter(party_col == party_id)
    if from_date:
        query = query.filter(model.invoice_date >= from_date)
    if to_date:
        query = query.filter(model.invoice_date <= to_date)

    rows = query.limit(limit).all()
    repaired = [inv.id for inv in rows if repair_status(inv)]
    if repaired:
        logger.info("%s status repaired on read: %s", model.__tablename__, repaired)
        db.flush()
    return rows


def list_ar_invoices(db: Session, *, q=None, status=None, customer_id=None, from_date=None, to_date=None, limit=100):
    return _list_invoices(
        db, ARInvoice, ARInvoice.customer_id,
        q=q, status=status, party_id=customer_id, from_date=from_date, to_date=to_date, limit=limit,
        options=(selectinload(ARInvoice.lines),),
    )


# =========================================================
# AP invoices (targets of supplier payments)
# =========================================================
def create_ap_invoice(
    db: Session,
    caps: SchemaCapabilities,
    payload: APInvoiceCreate,
    actor_id: Optional[int],
) -> Tuple[APInvoice, List[SideEffectResult]]:
    if not db.get(Supplier, payload.supplier_id):
        raise NotFound(f"Supplier with ID {payload.supplier_id} not found")
    if payload.po_id is not None and not db.get(PurchaseOrder, payload.po_id):
        raise NotFound(f"Purchase order {payload.po_id} not found")
    _ensure_unique_number(db, APInvoice, payload.invoice_number)

    subtotal = money2(payload.subtotal)
    tax = money2(payload.tax_amount)
    total = money2(payload.total_amount) if payload.total_amount is not None else money2(subtotal + tax)
    if payload.total_amount is not None and subtotal == 0 and tax == 0:
        subtotal = total

    invoice = APInvoice(
        invoice_number=payload.invoice_number,
        supplier_id=payload.supplier_id,
        po_id=payload.po_id,
        invoice_date=payload.invoice_date or date.today(),
        due_date=payload.due_date,
        currency_code=payload.currency_code or settings.DEFAULT_CURRENCY,
        exchange_rate=payload.exchange_rate or Decimal("1"),
        subtotal=subtotal,
        tax_amount=tax,
        total_amount=total,
        amount_paid=ZERO,
        status=_check_status(payload.status) or InvoiceStatus.OPEN.value,
        notes=payload.notes,
        created_by=actor_id,
    )
    db.add(invoice)
    db.flush()

    effects = [_audit(db, caps, actor_id, "CREATE", "AP_INVOICE", invoice)]
    return invoice, report(effects, "create AP invoice", invoice.id)


def patch_ap_invoice_status(
    db: Session,
    caps: SchemaCapabilities,
    invoice_id: int,
    patch: StatusPatch,
    actor_id: Optional[int],
) -> Tuple[APInvoice, List[SideEffectResult]]:
    status = _check_status(patch.status)
    approval = _check_approval(patch.approval_status)
    if not status and not approval:
        raise ValidationError("No status fields provided")

    invoice = get_ap_invoice(db, invoice_id)
    before = serialize_for_audit(invoice)
    if status:
        invoice.status = status
        # OPEN / PAID always follow the balance
        repair_status(invoice)
    if approval:
        invoice.approval_status = approval
    db.flush()

    effects = [_audit(db, caps, actor_id, "STATUS_CHANGE", "AP_INVOICE", invoice, before)]
    return invoice, report(effects, "status AP invoice", invoice.id)


def get_ap_invoice(db: Session, invoice_id: int) -> APInvoice:
    invoice = db.get(APInvoice, invoice_id)
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")
    if repair_status(invoice):
        db.flush()
    return invoice


def list_ap_invoices(db: Session, *, q=None, status=None, supplier_id=None, from_date=None, to_date=None, limit=100):
    return _list_invoices(
        db, APInvoice, APInvoice.supplier_id,
        q=q, status=status, party_id=supplier_id, from_date=from_date, to_date=to_date, limit=limit,
    )
