# erp_engine/services/settlement_engine.py
"""
Applying payment (AP) and receipt (AR) funds against invoices.

Both books share one algorithm; a SettlementBook only says which tables,
columns and counters to use.

A header in DRAFT may carry applications without moving invoice balances.
PAID is the committing state: each ACTIVE application has been added to its
invoice's amount_paid. Promoting DRAFT -> PAID rebuilds the applications
against current invoice balances and then commits them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, selectinload

from erp_engine.core.config import settings
from erp_engine.core.errors import (
    CannotModifyCommitted,
    DuplicateNumber,
    HasActiveApplications,
    InvalidStatus,
    NotFound,
    OverApplication,
    ValidationError,
)
from erp_engine.core.money import D, ZERO, money2
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.models.invoices import APInvoice, ARInvoice
from erp_engine.models.party import Customer, Supplier
from erp_engine.models.settlement import (
    APPayment,
    APPaymentApplication,
    ApplicationStatus,
    ARReceipt,
    ARReceiptApplication,
    PaymentStatus,
)
from erp_engine.schemas.settlement import ApplicationIn
from erp_engine.services.audit_trail import record_audit, serialize_for_audit
from erp_engine.services.invoice_balances import current_amount_due, post_payment, unpost_payment
from erp_engine.services.numbering import next_sequence_value
from erp_engine.services.side_effects import SideEffectResult, report

logger = logging.getLogger(__name__)

ACTIVE = ApplicationStatus.ACTIVE.value
REVERSED = ApplicationStatus.REVERSED.value


@dataclass(frozen=True)
class SettlementBook:
    document_type: str
    header: Any
    application: Any
    invoice: Any
    party: Any
    party_field: str
    number_field: str
    date_field: str
    amount_field: str
    parent_fk: str
    header_seq: str
    application_seq: str
    # status when the caller does not say
    default_status: str
    # what a soft delete turns the header into
    deleted_status: str
    statuses: Tuple[str, ...]

    def amount(self, header) -> Decimal:
        return D(getattr(header, self.amount_field))


AP_PAYMENTS = SettlementBook(
    document_type="AP_PAYMENT",
    header=APPayment,
    application=APPaymentApplication,
    invoice=APInvoice,
    party=Supplier,
    party_field="supplier_id",
    number_field="payment_number",
    date_field="payment_date",
    amount_field="payment_amount",
    parent_fk="payment_id",
    header_seq="AP_PAYMENT_ID_SEQ",
    application_seq="AP_PAYMENT_APPLICATION_ID_SEQ",
    default_status=PaymentStatus.PAID.value,
    deleted_status=PaymentStatus.DRAFT.value,
    statuses=(PaymentStatus.DRAFT.value, PaymentStatus.PAID.value),
)

AR_RECEIPTS = SettlementBook(
    document_type="AR_RECEIPT",
    header=ARReceipt,
    application=ARReceiptApplication,
    invoice=ARInvoice,
    party=Customer,
    party_field="customer_id",
    number_field="receipt_number",
    date_field="receipt_date",
    amount_field="receipt_amount",
    parent_fk="receipt_id",
    header_seq="AR_RECEIPT_ID_SEQ",
    application_seq="AR_RECEIPT_APPLICATION_ID_SEQ",
    default_status=PaymentStatus.DRAFT.value,
    deleted_status=PaymentStatus.CANCELLED.value,
    statuses=(PaymentStatus.DRAFT.value, PaymentStatus.PAID.value, PaymentStatus.CANCELLED.value),
)


def is_committing(status: str) -> bool:
    return status == PaymentStatus.PAID.value


# =========================================================
# Loading / checks
# =========================================================
def _load_header(db: Session, book: SettlementBook, header_id: int, *, lock: bool = False):
    q = db.query(book.header).options(selectinload(book.header.applications)).filter(book.header.id == header_id)
    if lock:
        q = q.with_for_update()
    header = q.first()
    if not header:
        raise NotFound(f"{book.document_type.replace('_', ' ').title()} {header_id} not found")
    return header


def _lock_invoice(db: Session, book: SettlementBook, invoice_id: int):
    invoice = db.execute(
        select(book.invoice).where(book.invoice.id == invoice_id).with_for_update()
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFound(f"Invoice with ID {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


def _ensure_party(db: Session, book: SettlementBook, party_id: Optional[int]) -> None:
    if party_id is None:
        raise ValidationError(f"{book.party_field} is required")
    if not db.get(book.party, party_id):
        raise NotFound(f"{book.party.__name__} with ID {party_id} not found", details={book.party_field: party_id})


def _ensure_unique_number(db: Session, book: SettlementBook, number: Optional[str], exclude_id: Optional[int] = None):
    if not number:
        return
    col = getattr(book.header, book.number_field)
    q = db.query(book.header.id).filter(col == number)
    if exclude_id is not None:
        q = q.filter(book.header.id != exclude_id)
    if q.first():
        raise DuplicateNumber(f"{book.document_type} number {number} already exists", details={"number": number})


def _active_total(header) -> Decimal:
    return money2(sum((D(a.applied_amount) for a in header.applications if a.status == ACTIVE), ZERO))


def _sync_header_totals(book: SettlementBook, header, applied: Optional[Decimal] = None) -> None:
    applied = _active_total(header) if applied is None else money2(applied)
    header.amount_applied = applied
    header.unapplied_amount = money2(book.amount(header) - applied)


def _audit(db, caps, book, actor_id, action, header, before=None) -> SideEffectResult:
    return record_audit(
        db,
        caps,
        actor_id=actor_id,
        action=action,
        document_type=book.document_type,
        document_id=header.id,
        old_values=before,
        new_values=serialize_for_audit(header, children=("applications",)),
    )


# =========================================================
# Core application step
# =========================================================
def _apply_one(
    db: Session,
    book: SettlementBook,
    header,
    app_in: ApplicationIn,
    remaining: Decimal,
    actor_id: Optional[int],
):
    amount = money2(app_in.applied_amount)
    if amount <= 0:
        raise ValidationError(
            f"Application amount must be greater than zero for invoice {app_in.invoice_id}",
            details={"invoice_id": app_in.invoice_id},
        )

    invoice = _lock_invoice(db, book, app_in.invoice_id)
    due = current_amount_due(invoice)

    if amount > due:
        raise OverApplication(
            f"Application amount {amount} exceeds invoice amount due {due} for invoice {invoice.id}",
            details={"invoice_id": invoice.id, "applied": str(amount), "amount_due": str(due)},
        )
    if amount > remaining:
        raise OverApplication(
            f"Application amount {amount} exceeds remaining {book.document_type.lower()} amount {remaining}",
            details={"invoice_id": invoice.id, "applied": str(amount), "remaining": str(remaining)},
        )

    app = book.application(
        id=next_sequence_value(db, book.application_seq),
        invoice_id=invoice.id,
        applied_amount=amount,
        unapplied_amount=money2(max(ZERO, due - amount)),
        application_date=app_in.application_date or getattr(header, book.date_field) or date.today(),
        status=ACTIVE,
        notes=app_in.notes,
        created_by=actor_id,
    )
    header.applications.append(app)

    if is_committing(header.status):
        post_payment(invoice, amount)

    return app, amount


def _apply_all(
    db: Session,
    book: SettlementBook,
    header,
    applications: Sequence[ApplicationIn],
    actor_id: Optional[int],
) -> Decimal:
    total_applied = ZERO
    for app_in in applications:
        remaining = money2(book.amount(header) - total_applied)
        _, amount = _apply_one(db, book, header, app_in, remaining, actor_id)
        total_applied += amount
    return money2(total_applied)


# =========================================================
# Operations
# =========================================================
def create_payment(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    payload,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    data = payload.model_dump(exclude={"applications", "status"})
    _ensure_party(db, book, data.get(book.party_field))
    _ensure_unique_number(db, book, data.get(book.number_field))

    status = payload.status or book.default_status
    if status not in (PaymentStatus.DRAFT.value, PaymentStatus.PAID.value):
        raise InvalidStatus(f"New {book.document_type} must be DRAFT or PAID, got '{status}'")
    if money2(data[book.amount_field]) <= 0:
        raise ValidationError(f"{book.amount_field} must be greater than zero")

    data["currency_code"] = data.get("currency_code") or settings.DEFAULT_CURRENCY
    header = book.header(
        id=next_sequence_value(db, book.header_seq),
        status=status,
        amount_applied=ZERO,
        unapplied_amount=money2(data[book.amount_field]),
        created_by=actor_id,
        **data,
    )
    db.add(header)

    total_applied = _apply_all(db, book, header, payload.applications, actor_id)
    _sync_header_totals(book, header, total_applied)
    db.flush()

    effects = [_audit(db, caps, book, actor_id, "CREATE", header)]
    logger.info(
        "%s %s created status=%s amount=%s applied=%s",
        book.document_type, header.id, header.status, book.amount(header), header.amount_applied,
    )
    return header, report(effects, f"create {book.document_type}", header.id)


def promote_draft_to_paid(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    header_id: int,
    applications: Optional[Sequence[ApplicationIn]],
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    """
    DRAFT -> PAID. The draft's applications (or the ones passed in) are dropped
    and re-applied against current invoice balances, this time moving them.
    """
    header = _load_header(db, book, header_id, lock=True)
    if header.status != PaymentStatus.DRAFT.value:
        raise CannotModifyCommitted(f"{book.document_type} {header_id} is {header.status}; only DRAFT can be promoted")

    before = serialize_for_audit(header, children=("applications",))
    if applications is None:
        applications = [
            ApplicationIn(
                invoice_id=a.invoice_id,
                applied_amount=a.applied_amount,
                application_date=a.application_date,
                notes=a.notes,
            )
            for a in header.applications
            if a.status == ACTIVE
        ]

    header.applications.clear()
    db.flush()

    header.status = PaymentStatus.PAID.value
    total_applied = _apply_all(db, book, header, applications, actor_id)
    _sync_header_totals(book, header, total_applied)
    db.flush()

    effects = [_audit(db, caps, book, actor_id, "STATUS_CHANGE", header, before)]
    return header, report(effects, f"promote {book.document_type}", header.id)


def update_payment(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    header_id: int,
    payload,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    header = _load_header(db, book, header_id, lock=True)
    if header.status != PaymentStatus.DRAFT.value:
        raise CannotModifyCommitted(f"Cannot update {header.status.lower()} {book.document_type.lower()} {header_id}")

    data = payload.model_dump(exclude_unset=True, exclude={"applications", "status"})
    if book.party_field in data:
        _ensure_party(db, book, data[book.party_field])
    if data.get(book.number_field):
        _ensure_unique_number(db, book, data[book.number_field], exclude_id=header.id)

    target = payload.status
    if target and target not in book.statuses:
        raise InvalidStatus(f"Invalid status value '{target}'. Must be one of: {', '.join(book.statuses)}")

    before = serialize_for_audit(header, children=("applications",))
    for field, value in data.items():
        setattr(header, field, value)

    if book.amount_field in data and payload.applications is None:
        applied = _active_total(header)
        if applied > book.amount(header):
            raise OverApplication(
                f"{book.document_type.lower()} amount {book.amount(header)} is below amount already applied {applied}",
                details={"amount": str(book.amount(header)), "applied": str(applied)},
            )

    if target == PaymentStatus.PAID.value:
        db.flush()
        return promote_draft_to_paid(db, caps, book, header.id, payload.applications, actor_id)

    if payload.applications is not None:
        header.applications.clear()
        db.flush()
        _apply_all(db, book, header, payload.applications, actor_id)

    if target:
        header.status = target
    _sync_header_totals(book, header)
    db.flush()

    effects = [_audit(db, caps, book, actor_id, "UPDATE", header, before)]
    return header, report(effects, f"update {book.document_type}", header.id)


def add_application(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    header_id: int,
    app_in: ApplicationIn,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    header = _load_header(db, book, header_id, lock=True)
    if header.status not in (PaymentStatus.DRAFT.value, PaymentStatus.PAID.value):
        raise CannotModifyCommitted(f"{book.document_type} {header_id} is {header.status}")

    before = serialize_for_audit(header, children=("applications",))
    remaining = money2(book.amount(header) - _active_total(header))
    app, _ = _apply_one(db, book, header, app_in, remaining, actor_id)
    _sync_header_totals(book, header)
    db.flush()

    effects = [_audit(db, caps, book, actor_id, "UPDATE", header, before)]
    return app, report(effects, f"apply {book.document_type}", header.id)


def reverse_application(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    header_id: int,
    application_id: int,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    """Mark one application REVERSED and, on a committed header, take it back off the invoice."""
    header = _load_header(db, book, header_id, lock=True)
    app = next((a for a in header.applications if a.id == application_id), None)
    if app is None:
        raise NotFound(f"Application {application_id} not found on {book.document_type.lower()} {header_id}")
    if app.status != ACTIVE:
        return app, []

    before = serialize_for_audit(header, children=("applications",))
    if is_committing(header.status):
        unpost_payment(_lock_invoice(db, book, app.invoice_id), app.applied_amount)

    app.status = REVERSED
    _sync_header_totals(book, header)
    db.flush()

    effects = [_audit(db, caps, book, actor_id, "UPDATE", header, before)]
    return app, report(effects, f"reverse application {book.document_type}", header.id)


def delete_payment(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    header_id: int,
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    header = _load_header(db, book, header_id, lock=True)
    active = [a for a in header.applications if a.status == ACTIVE]
    if active:
        raise HasActiveApplications(
            f"Cannot delete {book.document_type.lower()} with active applications",
            details={"active_applications": [a.id for a in active]},
        )

    before = serialize_for_audit(header)
    header.status = book.deleted_status
    _sync_header_totals(book, header)
    db.flush()

    effects = [_audit(db, caps, book, actor_id, "DELETE", header, before)]
    return header, report(effects, f"delete {book.document_type}", header.id)


def patch_payment_status(
    db: Session,
    caps: SchemaCapabilities,
    book: SettlementBook,
    header_id: int,
    status: Optional[str],
    actor_id: Optional[int],
) -> Tuple[Any, List[SideEffectResult]]:
    if not status:
        raise ValidationError("No status fields provided")
    if status not in book.statuses:
        raise InvalidStatus(f"Invalid status value '{status}'. Must be one of: {', '.join(book.statuses)}")

    header = _load_header(db, book, header_id, lock=True)
    if status == header.status:
        return header, []
    if status == PaymentStatus.PAID.value:
        if header.status != PaymentStatus.DRAFT.value:
            raise CannotModifyCommitted(f"{book.document_type} {header_id} is {header.status}")
        return promote_draft_to_paid(db, caps, book, header_id, None, actor_id)
    if is_committing(header.status) and any(a.status == ACTIVE for a in header.applications):
        raise HasActiveApplications(
            f"{book.document_type} {header_id} has active applications; reverse them first"
        )

    before = serialize_for_audit(header)
    header.status = status
    db.flush()
    effects = [_audit(db, caps, book, actor_id, "STATUS_CHANGE", header, before)]
    return header, report(effects, f"status {book.document_type}", header.id)


# =========================================================
# Reads
# =========================================================
def get_payment(db: Session, book: SettlementBook, header_id: int):
    return _load_header(db, book, header_id)


def list_applications(db: Session, book: SettlementBook, header_id: int) -> list:
    _load_header(db, book, header_id)
    app = book.application
    return (
        db.query(app)
        .filter(getattr(app, book.parent_fk) == header_id)
        .order_by(app.application_date, app.id)
        .all()
    )


def repair_applied_totals(db: Session, book: SettlementBook, headers: Sequence[Any]) -> int:
    """
    Recompute amount_applied from ACTIVE applications for the given headers and
    fix any that drifted by more than the tolerance, in one UPDATE.
    Returns the number of rows corrected.
    """
    if not headers:
        return 0
    app = book.application
    fk = getattr(app, book.parent_fk)
    ids = [h.id for h in headers]

    sums: Dict[int, Decimal] = {
        pid: money2(total)
        for pid, total in db.execute(
            select(fk, func.coalesce(func.sum(app.applied_amount), 0))
            .where(fk.in_(ids), app.status == ACTIVE)
            .group_by(fk)
        ).all()
    }

    applied_fix: Dict[int, Decimal] = {}
    unapplied_fix: Dict[int, Decimal] = {}
    for h in headers:
        calculated = sums.get(h.id, ZERO)
        if abs(calculated - D(h.amount_applied)) > settings.PAID_TOLERANCE:
            applied_fix[h.id] = calculated
            unapplied_fix[h.id] = money2(book.amount(h) - calculated)

    if not applied_fix:
        return 0

    logger.warning("%s read-repair: correcting amount_applied on %s", book.document_type, sorted(applied_fix))
    db.execute(
        update(book.header)
        .where(book.header.id.in_(list(applied_fix)))
        .values(
            amount_applied=case(applied_fix, value=book.header.id),
            unapplied_amount=case(unapplied_fix, value=book.header.id),
        )
        .execution_options(synchronize_session=False)
    )
    for h in headers:
        if h.id in applied_fix:
            db.expire(h)
    return len(applied_fix)


def list_payments(
    db: Session,
    book: SettlementBook,
    *,
    status: Optional[str] = None,
    party_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    q: Optional[str] = None,
    limit: int = 100,
) -> list:
    hdr = book.header
    query = db.query(hdr).options(selectinload(hdr.applications)).order_by(hdr.created_at.desc(), hdr.id.desc())

    if status and status != "ALL":
        query = query.filter(hdr.status == status.strip().upper())
    if party_id:
        query = query.filter(getattr(hdr, book.party_field) == party_id)
    if from_date:
        query = query.filter(getattr(hdr, book.date_field) >= from_date)
    if to_date:
        query = query.filter(getattr(hdr, book.date_field) <= to_date)
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(getattr(hdr, book.number_field).ilike(like))

    headers = query.limit(limit).all()
    repair_applied_totals(db, book, headers)
    return headers


def check_draft_conflicts(
    db: Session,
    book: SettlementBook,
    invoice_ids: Sequence[int],
    exclude_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Invoices already sitting in some other DRAFT payment/receipt."""
    if not invoice_ids:
        return []
    hdr, app, inv = book.header, book.application, book.invoice
    fk = getattr(app, book.parent_fk)

    stmt = (
        select(app.invoice_id, inv.invoice_number, hdr.id, getattr(hdr, book.number_field))
        .join(hdr, hdr.id == fk)
        .join(inv, inv.id == app.invoice_id)
        .where(hdr.status == PaymentStatus.DRAFT.value, app.invoice_id.in_(list(invoice_ids)))
        .distinct()
    )
    if exclude_id:
        stmt = stmt.where(hdr.id != exclude_id)

    return [
        {
            "invoice_id": invoice_id,
            "invoice_number": invoice_number,
            "document_id": doc_id,
            "document_number": doc_number,
        }
        for invoice_id, invoice_number, doc_id, doc_number in db.execute(stmt).all()
    ]
