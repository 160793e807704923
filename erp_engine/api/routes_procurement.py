# erp_engine/api/routes_procurement.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from erp_engine.api.deps import Actor, current_actor, get_database
from erp_engine.api.response import ok, side_effects_meta
from erp_engine.db.session import Database
from erp_engine.schemas.common import StatusPatch
from erp_engine.schemas.procurement import (
    AgreementCreate,
    AgreementLineIn,
    AgreementLineOut,
    AgreementOut,
    AgreementUpdate,
    PONumberOut,
    POCreate,
    POLineOut,
    POOut,
    POUpdate,
    ReceiptCreate,
    ReceiptOut,
    ReceiptUpdate,
    RequisitionCreate,
    RequisitionOut,
    RequisitionUpdate,
)
from erp_engine.services import goods_receipts as grn
from erp_engine.services import procurement_lifecycle as docs
from erp_engine.services.numbering import generate_po_number

router = APIRouter(tags=["Procurement"])


def _dump(out_model, obj) -> dict:
    return out_model.model_validate(obj).model_dump()


# =========================================================
# Requisitions
# =========================================================
@router.get("/requisitions")
def list_requisitions(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    with database.session() as db:
        rows = docs.list_documents(
            db, docs.REQUISITION,
            q=q, status=status, supplier_id=supplier_id, from_date=from_date, to_date=to_date, limit=limit,
        )
        return ok([_dump(RequisitionOut, r) for r in rows])


@router.get("/requisitions/{requisition_id}")
def get_requisition(requisition_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_dump(RequisitionOut, docs.get_document(db, docs.REQUISITION, requisition_id)))


@router.post("/requisitions", status_code=201)
def create_requisition(
    payload: RequisitionCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        doc, effects = docs.create_document(db, database.capabilities, docs.REQUISITION, payload, me.id)
        data = _dump(RequisitionOut, doc)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/requisitions/{requisition_id}")
def update_requisition(
    requisition_id: int,
    payload: RequisitionUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        doc, effects = docs.update_document(db, database.capabilities, docs.REQUISITION, requisition_id, payload, me.id)
        data = _dump(RequisitionOut, doc)
    return ok(data, meta=side_effects_meta(effects))


@router.patch("/requisitions/{requisition_id}/status")
def patch_requisition_status(
    requisition_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        doc, effects = docs.patch_status(db, database.capabilities, docs.REQUISITION, requisition_id, payload, me.id)
        data = _dump(RequisitionOut, doc)
    return ok(data, meta=side_effects_meta(effects))


@router.delete("/requisitions/{requisition_id}")
def cancel_requisition(requisition_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        doc, effects = docs.cancel_document(db, database.capabilities, docs.REQUISITION, requisition_id, me.id)
        data = _dump(RequisitionOut, doc)
    return ok(data, meta=side_effects_meta(effects))


# =========================================================
# Agreements
# =========================================================
@router.get("/agreements")
def list_agreements(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    with database.session() as db:
        rows = docs.list_documents(
            db, docs.AGREEMENT,
            q=q, status=status, supplier_id=supplier_id, from_date=from_date, to_date=to_date, limit=limit,
        )
        return ok([_dump(AgreementOut, r) for r in rows])


@router.get("/agreements/{agreement_id}")
def get_agreement(agreement_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_dump(AgreementOut, docs.get_document(db, docs.AGREEMENT, agreement_id)))


@router.get("/agreements/{agreement_id}/lines")
def list_agreement_lines(agreement_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok([_dump(AgreementLineOut, li) for li in docs.list_document_lines(db, docs.AGREEMENT, agreement_id)])


@router.post("/agreements/{agreement_id}/lines", status_code=201)
def add_agreement_line(
    agreement_id: int,
    payload: AgreementLineIn,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        line, effects = docs.add_document_line(db, database.capabilities, docs.AGREEMENT, agreement_id, payload, me.id)
        data = _dump(AgreementLineOut, line)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.post("/agreements", status_code=201)
def create_agreement(
    payload: AgreementCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        doc, effects = docs.create_document(db, database.capabilities, docs.AGREEMENT, payload, me.id)
        data = _dump(AgreementOut, doc)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/agreements/{agreement_id}")
def update_agreement(
    agreement_id: int,
    payload: AgreementUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        doc, effects = docs.update_document(db, database.capabilities, docs.AGREEMENT, agreement_id, payload, me.id)
        data = _dump(AgreementOut, doc)
    return ok(data, meta=side_effects_meta(effects))


@router.patch("/agreements/{agreement_id}/status")
def patch_agreement_status(
    agreement_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        doc, effects = docs.patch_status(db, database.capabilities, docs.AGREEMENT, agreement_id, payload, me.id)
        data = _dump(AgreementOut, doc)
    return ok(data, meta=side_effects_meta(effects))


@router.delete("/agreements/{agreement_id}")
def cancel_agreement(agreement_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        doc, effects = docs.cancel_document(db, database.capabilities, docs.AGREEMENT, agreement_id, me.id)
        data = _dump(AgreementOut, doc)
    return ok(data, meta=side_effects_meta(effects))


# =========================================================
# Purchase orders
# =========================================================
@router.get("/purchase-orders/generate-po-number")
def next_po_number(
    year: Optional[int] = Query(None, ge=2000, le=9999),
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    """Reserve the next free PO number for the year."""
    with database.transaction() as db:
        po_number = generate_po_number(db, database.capabilities, year=year)
    return ok(PONumberOut(po_number=po_number, year=year or date.today().year).model_dump())


@router.get("/purchase-orders")
def list_purchase_orders(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    with database.session() as db:
        rows = docs.list_documents(
            db, docs.PURCHASE_ORDER,
            q=q, status=status, supplier_id=supplier_id, from_date=from_date, to_date=to_date, limit=limit,
        )
        return ok([_dump(POOut, r) for r in rows])


@router.get("/purchase-orders/{po_id}")
def get_purchase_order(po_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_dump(POOut, docs.get_document(db, docs.PURCHASE_ORDER, po_id)))


@router.get("/purchase-orders/{po_id}/lines")
def list_purchase_order_lines(po_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok([_dump(POLineOut, li) for li in docs.list_document_lines(db, docs.PURCHASE_ORDER, po_id)])


@router.post("/purchase-orders", status_code=201)
def create_purchase_order(
    payload: POCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        po, effects = docs.create_document(db, database.capabilities, docs.PURCHASE_ORDER, payload, me.id)
        data = _dump(POOut, po)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/purchase-orders/{po_id}")
def update_purchase_order(
    po_id: int,
    payload: POUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        po, effects = docs.update_document(db, database.capabilities, docs.PURCHASE_ORDER, po_id, payload, me.id)
        data = _dump(POOut, po)
    return ok(data, meta=side_effects_meta(effects))


@router.patch("/purchase-orders/{po_id}/status")
def patch_purchase_order_status(
    po_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        po, effects = docs.patch_status(db, database.capabilities, docs.PURCHASE_ORDER, po_id, payload, me.id)
        data = _dump(POOut, po)
    return ok(data, meta=side_effects_meta(effects))


@router.post("/purchase-orders/{po_id}/rollup")
def rollup_purchase_order(po_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        status = docs.rollup_po_status(db, po_id)
    return ok({"id": po_id, "status": status})


@router.delete("/purchase-orders/{po_id}")
def cancel_purchase_order(po_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        po, effects = docs.cancel_document(db, database.capabilities, docs.PURCHASE_ORDER, po_id, me.id)
        data = _dump(POOut, po)
    return ok(data, meta=side_effects_meta(effects))


# =========================================================
# Goods receipts
# =========================================================
@router.get("/receipts")
def list_receipts(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    po_id: Optional[int] = Query(None),
    supplier_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    with database.session() as db:
        rows = grn.list_receipts(
            db, q=q, status=status, po_id=po_id, supplier_id=supplier_id,
            from_date=from_date, to_date=to_date, limit=limit,
        )
        return ok([_dump(ReceiptOut, r) for r in rows])


@router.get("/receipts/{receipt_id}")
def get_receipt(receipt_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_dump(ReceiptOut, grn.get_receipt(db, receipt_id)))


@router.post("/receipts", status_code=201)
def create_receipt(
    payload: ReceiptCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        receipt, effects = grn.create_receipt(db, database.capabilities, payload, me.id)
        data = _dump(ReceiptOut, receipt)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/receipts/{receipt_id}")
def update_receipt(
    receipt_id: int,
    payload: ReceiptUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        receipt, effects = grn.update_receipt(db, database.capabilities, receipt_id, payload, me.id)
        data = _dump(ReceiptOut, receipt)
    return ok(data, meta=side_effects_meta(effects))


@router.delete("/receipts/{receipt_id}")
def cancel_receipt(receipt_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        receipt, effects = grn.cancel_receipt(db, database.capabilities, receipt_id, me.id)
        data = _dump(ReceiptOut, receipt)
    return ok(data, meta=side_effects_meta(effects))
