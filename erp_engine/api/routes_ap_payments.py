# erp_engine/api/routes_ap_payments.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from erp_engine.api.deps import Actor, current_actor, get_database
from erp_engine.api.response import ok, side_effects_meta
from erp_engine.db.session import Database
from erp_engine.schemas.common import StatusPatch
from erp_engine.schemas.settlement import (
    APPaymentCreate,
    APPaymentOut,
    APPaymentUpdate,
    ApplicationIn,
    ApplicationOut,
    DraftConflictOut,
    DraftConflictQuery,
)
from erp_engine.services import settlement_engine as engine

router = APIRouter(prefix="/ap-payments", tags=["Payables - Payments"])
BOOK = engine.AP_PAYMENTS


def _out(header) -> dict:
    return APPaymentOut.model_validate(header).model_dump()


@router.get("")
def list_payments(
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    # list repairs stale applied totals, so it runs in a transaction
    with database.transaction() as db:
        rows = engine.list_payments(
            db, BOOK, status=status, party_id=supplier_id, from_date=from_date, to_date=to_date, q=q, limit=limit,
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


@router.get("/{payment_id}")
def get_payment(payment_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        return ok(_out(engine.get_payment(db, BOOK, payment_id)))


@router.post("", status_code=201)
def create_payment(
    payload: APPaymentCreate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        header, effects = engine.create_payment(db, database.capabilities, BOOK, payload, me.id)
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.put("/{payment_id}")
def update_payment(
    payment_id: int,
    payload: APPaymentUpdate,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        header, effects = engine.update_payment(db, database.capabilities, BOOK, payment_id, payload, me.id)
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


@router.patch("/{payment_id}/status")
def patch_payment_status(
    payment_id: int,
    payload: StatusPatch,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        header, effects = engine.patch_payment_status(
            db, database.capabilities, BOOK, payment_id, payload.status, me.id
        )
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


@router.delete("/{payment_id}")
def delete_payment(payment_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.transaction() as db:
        header, effects = engine.delete_payment(db, database.capabilities, BOOK, payment_id, me.id)
        data = _out(header)
    return ok(data, meta=side_effects_meta(effects))


# ---------------- applications ----------------
@router.get("/{payment_id}/applications")
def list_applications(payment_id: int, database: Database = Depends(get_database), me: Actor = Depends(current_actor)):
    with database.session() as db:
        rows = engine.list_applications(db, BOOK, payment_id)
        return ok([ApplicationOut.model_validate(a).model_dump() for a in rows])


@router.post("/{payment_id}/applications", status_code=201)
def add_application(
    payment_id: int,
    payload: ApplicationIn,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        app, effects = engine.add_application(db, database.capabilities, BOOK, payment_id, payload, me.id)
        data = ApplicationOut.model_validate(app).model_dump()
    return ok(data, meta=side_effects_meta(effects), status_code=201)


@router.post("/{payment_id}/applications/{application_id}/reverse")
def reverse_application(
    payment_id: int,
    application_id: int,
    database: Database = Depends(get_database),
    me: Actor = Depends(current_actor),
):
    with database.transaction() as db:
        app, effects = engine.reverse_application(
            db, database.capabilities, BOOK, payment_id, application_id, me.id
        )
        data = ApplicationOut.model_validate(app).model_dump()
    return ok(data, meta=side_effects_meta(effects))
