# erp_engine/api/routes_ar_receipts.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from erp_engine.api.deps import Actor, current_actor, get_database
from erp_engine.api.response import ok, side_effects_meta
from erp_engine.db.session import Database
from erp_engine.schemas.common import StatusPatch
from erp_engine.schemas.settlement import (
    ApplicationIn,
    ApplicationOut,
    ARReceiptCreate,
    ARReceiptOut,
    ARReceiptUpdate,
    DraftConflictOut,
    DraftConflictQuery,
    PromoteIn,
)
from erp_engine.services import settlement_engine as engine

router = APIRouter(prefix="/ar-receipts", tags=["Receivables - Receipts"])
BOOK = engine.AR_RECEIPTS


def _out(header) -> dict:
    return ARReceiptOut.model_validate(header).model_dump()


@router.get("")
def list_receipts(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    with database.transaction() as db:
        rows = engine.list_payments(
            db, BOOK, status=status, party_id=customer_id, from_date=from_date, to_date=to_date, q=q, limit=limit,
        )
        data = [_out(r) for r in rows]
    return ok(data)


@router.post("/check-draft-conflicts")
def check_draft_conflicts(
    payload: DraftConflictQuery,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.session() as db:
        rows = engine.check_draft_conflicts(db, BOOK, payload.invoice_ids, payload.exclude_id)
    return ok([DraftConflictOut(**r).model_dump() for r in rows])


@router.get("/{receipt_id}")
def get_receipt(receipt_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_out(engine.get_payment(db, BOOK, receipt_id)))


@router.post("", status_code=201)
def create_receipt(
    payload: ARReceiptCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        header, effects = engine.create_payment(db, database.capabilities, BOOK, payload, me.id)
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/{receipt_id}")
def update_receipt(
    receipt_id: int,
    payload: ARReceiptUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        header, effects = engine.update_payment(db, database.capabilities, BOOK, receipt_id, payload, me.id)
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


@router.post("/{receipt_id}/apply")
def apply_receipt(
    receipt_id: int,
    payload: Optional[PromoteIn] = None,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    """Commit a DRAFT receipt: its applications now move invoice balances."""
    applications = payload.applications if payload is not None else None
    with database.transaction() as db:
        header, effects = engine.promote_draft_to_paid(
            db, database.capabilities, BOOK, receipt_id, applications, me.id
        )
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


@router.patch("/{receipt_id}/status")
def patch_receipt_status(
    receipt_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        header, effects = engine.patch_payment_status(
            db, database.capabilities, BOOK, receipt_id, payload.status, me.id
        )
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


@router.delete("/{receipt_id}")
def delete_receipt(receipt_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        header, effects = engine.delete_payment(db, database.capabilities, BOOK, receipt_id, me.id)
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


# ---------------- applications ----------------
@router.get("/{receipt_id}/applications")
def list_applications(receipt_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        rows = engine.list_applications(db, BOOK, receipt_id)
        return ok([ApplicationOut.model_validate(a).model_dump() for a in rows])


@router.post("/{receipt_id}/applications", status_code=201)
def add_application(
    receipt_id: int,
    payload: ApplicationIn,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        app, effects = engine.add_application(db, database.capabilities, BOOK, receipt_id, payload, me.id)
        data = ApplicationOut.model_validate(app).model_dump()
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.post("/{receipt_id}/applications/{application_id}/reverse")
def reverse_application(
    receipt_id: int,
    application_id: int,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        app, effects = engine.reverse_application(
            db, database.capabilities, BOOK, receipt_id, application_id, me.id
        )
        data = ApplicationOut.model_validate(app).model_dump()
    return ok(data, meta=side_effects_meta(effects))
