# erp_engine/api/routes_invoices.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from erp_engine.api.deps import Actor, current_actor, get_database
from erp_engine.api.response import ok, side_effects_meta
from erp_engine.db.session import Database
from erp_engine.schemas.common import StatusPatch
from erp_engine.schemas.invoices import (
    APInvoiceCreate,
    APInvoiceOut,
    ARInvoiceCreate,
    ARInvoiceOut,
    ARInvoiceUpdate,
)
from erp_engine.services import invoices as svc

router = APIRouter(tags=["Invoices"])


# =========================================================
# AR invoices
# =========================================================
@router.get("/ar-invoices")
def list_ar_invoices(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    # status is repaired on read, so this commits
    with database.transaction() as db:
        rows = svc.list_ar_invoices(
            db, q=q, status=status, customer_id=customer_id, from_date=from_date, to_date=to_date, limit=limit,
        )
        data = [ARInvoiceOut.model_validate(r).model_dump() for r in rows]
    return ok(data)


@router.get("/ar-invoices/{invoice_id}")
def get_ar_invoice(invoice_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        data = ARInvoiceOut.model_validate(svc.get_ar_invoice(db, invoice_id)).model_dump()
    return ok(data)


@router.post("/ar-invoices", status_code=201)
def create_ar_invoice(
    payload: ARInvoiceCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        invoice, effects = svc.create_ar_invoice(db, database.capabilities, payload, me.id)
        data = ARInvoiceOut.model_validate(invoice).model_dump()
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/ar-invoices/{invoice_id}")
def update_ar_invoice(
    invoice_id: int,
    payload: ARInvoiceUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        invoice, effects = svc.update_ar_invoice(db, database.capabilities, invoice_id, payload, me.id)
        data = ARInvoiceOut.model_validate(invoice).model_dump()
    return ok(data, meta=side_effects_meta(effects))


@router.patch("/ar-invoices/{invoice_id}/status")
def patch_ar_invoice_status(
    invoice_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        invoice, effects = svc.patch_ar_invoice_status(db, database.capabilities, invoice_id, payload, me.id)
        data = ARInvoiceOut.model_validate(invoice).model_dump()
    return ok(data, meta=side_effects_meta(effects))


# =========================================================
# AP invoices
# =========================================================
@router.get("/ap-invoices")
def list_ap_invoices(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    with database.transaction() as db:
        rows = svc.list_ap_invoices(
            db, q=q, status=status, supplier_id=supplier_id, from_date=from_date, to_date=to_date, limit=limit,
        )
        data = [APInvoiceOut.model_validate(r).model_dump() for r in rows]
    return ok(data)


@router.get("/ap-invoices/{invoice_id}")
def get_ap_invoice(invoice_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        data = APInvoiceOut.model_validate(svc.get_ap_invoice(db, invoice_id)).model_dump()
    return ok(data)


@router.post("/ap-invoices", status_code=201)
def create_ap_invoice(
    payload: APInvoiceCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        invoice, effects = svc.create_ap_invoice(db, database.capabilities, payload, me.id)
        data = APInvoiceOut.model_validate(invoice).model_dump()
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.patch("/ap-invoices/{invoice_id}/status")
def patch_ap_invoice_status(
    invoice_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        invoice, effects = svc.patch_ap_invoice_status(db, database.capabilities, invoice_id, payload, me.id)
        data = APInvoiceOut.model_validate(invoice).model_dump()
    return ok(data, meta=side_effects_meta(effects))
