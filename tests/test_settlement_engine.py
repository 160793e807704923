"""
Payments and receipts applied against invoices.
"""

from datetime import date
from decimal import Decimal

import pydantic
import pytest
from sqlalchemy import update

from erp_engine.core.errors import (
    CannotModifyCommitted,
    DuplicateNumber,
    HasActiveApplications,
    InvalidStatus,
    NotFound,
    OverApplication,
    ValidationError,
)
from erp_engine.models import APPayment
from erp_engine.schemas.settlement import (
    APPaymentCreate,
    APPaymentUpdate,
    ApplicationIn,
    ARReceiptCreate,
    DraftConflictQuery,
)
from erp_engine.services import settlement_engine as engine

from conftest import TEST_ACTOR_ID

AP = engine.AP_PAYMENTS
AR = engine.AR_RECEIPTS


def app_in(invoice, amount):
    return ApplicationIn(invoice_id=invoice.id, applied_amount=Decimal(amount))


@pytest.fixture
def pay(db, caps, supplier):
    def _pay(amount, applications=(), status=None, number=None):
        payload = APPaymentCreate(
            payment_number=number,
            supplier_id=supplier.id,
            payment_date=date(2024, 3, 1),
            payment_amount=Decimal(amount),
            status=status,
            applications=list(applications),
        )
        header, _ = engine.create_payment(db, caps, AP, payload, TEST_ACTOR_ID)
        return header

    return _pay


class TestDraftAndPromote:
    def test_draft_does_not_touch_invoice(self, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "40")], status="DRAFT")
        assert payment.status == "DRAFT"
        assert payment.amount_applied == Decimal("40.00")
        assert payment.unapplied_amount == Decimal("60.00")
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.status == "OPEN"

    def test_promote_commits_to_invoice(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "40")], status="DRAFT")
        payment, _ = engine.promote_draft_to_paid(db, caps, AP, payment.id, None, TEST_ACTOR_ID)
        assert payment.status == "PAID"
        assert invoice.amount_paid == Decimal("40.00")
        assert invoice.status == "OPEN"
        assert [a.status for a in payment.applications] == ["ACTIVE"]

    def test_promote_with_replacement_applications(self, db, caps, pay, make_ap_invoice):
        first, second = make_ap_invoice("100.00"), make_ap_invoice("30.00")
        payment = pay("100", [app_in(first, "40")], status="DRAFT")
        payment, _ = engine.promote_draft_to_paid(db, caps, AP, payment.id, [app_in(second, "30")], TEST_ACTOR_ID)
        assert first.amount_paid == Decimal("0.00")
        assert second.status == "PAID"
        assert payment.amount_applied == Decimal("30.00")

    def test_only_drafts_promote(self, db, caps, pay):
        payment = pay("50")
        with pytest.raises(CannotModifyCommitted):
            engine.promote_draft_to_paid(db, caps, AP, payment.id, None, TEST_ACTOR_ID)

    def test_patch_to_paid_promotes(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "100")], status="DRAFT")
        engine.patch_payment_status(db, caps, AP, payment.id, "PAID", TEST_ACTOR_ID)
        assert invoice.status == "PAID"


class TestApplications:
    def test_exact_due_pays_invoice(self, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "100")])
        assert payment.status == "PAID"
        assert invoice.status == "PAID"
        assert invoice.amount_due == Decimal("0.00")
        assert payment.applications[0].unapplied_amount == Decimal("0.00")

    def test_unapplied_snapshot(self, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "25")])
        assert payment.applications[0].unapplied_amount == Decimal("75.00")

    def test_dto_rejects_zero_and_negative(self, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        for amount in ("0", "-5"):
            with pytest.raises(pydantic.ValidationError):
                app_in(invoice, amount)

    def test_engine_rejects_zero(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100")
        zero = ApplicationIn.model_construct(
            invoice_id=invoice.id, applied_amount=Decimal("0"), application_date=None, notes=None,
        )
        with pytest.raises(ValidationError):
            engine.add_application(db, caps, AP, payment.id, zero, TEST_ACTOR_ID)

    def test_more_than_due(self, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        with pytest.raises(OverApplication) as exc:
            pay("500", [app_in(invoice, "100.01")])
        assert exc.value.details["amount_due"] == "100.00"

    def test_more_than_payment(self, pay, make_ap_invoice):
        first, second = make_ap_invoice("100.00"), make_ap_invoice("100.00")
        with pytest.raises(OverApplication):
            pay("150", [app_in(first, "100"), app_in(second, "60")])

    def test_unknown_invoice(self, pay):
        with pytest.raises(NotFound):
            pay("10", [ApplicationIn(invoice_id=98765, applied_amount=Decimal("5"))])

    def test_add_application_on_paid_header_moves_invoice(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100")
        app, _ = engine.add_application(db, caps, AP, payment.id, app_in(invoice, "60"), TEST_ACTOR_ID)
        assert app.status == "ACTIVE"
        assert invoice.amount_paid == Decimal("60.00")
        assert payment.unapplied_amount == Decimal("40.00")

    def test_frozen_invoice_status_is_kept(self, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00", status="DRAFT")
        pay("100", [app_in(invoice, "100")])
        assert invoice.amount_paid == Decimal("100.00")
        assert invoice.status == "DRAFT"


class TestReverseAndDelete:
    def test_delete_blocked_until_reversed(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "100")])

        with pytest.raises(HasActiveApplications):
            engine.delete_payment(db, caps, AP, payment.id, TEST_ACTOR_ID)

        app = payment.applications[0]
        app, _ = engine.reverse_application(db, caps, AP, payment.id, app.id, TEST_ACTOR_ID)
        assert app.status == "REVERSED"
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.status == "OPEN"
        assert payment.amount_applied == Decimal("0.00")

        payment, _ = engine.delete_payment(db, caps, AP, payment.id, TEST_ACTOR_ID)
        assert payment.status == "DRAFT"

    def test_reverse_twice_is_a_no_op(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "50")])
        app_id = payment.applications[0].id
        engine.reverse_application(db, caps, AP, payment.id, app_id, TEST_ACTOR_ID)
        _, effects = engine.reverse_application(db, caps, AP, payment.id, app_id, TEST_ACTOR_ID)
        assert effects == []
        assert invoice.amount_paid == Decimal("0.00")

    def test_reverse_unknown_application(self, db, caps, pay):
        payment = pay("10")
        with pytest.raises(NotFound):
            engine.reverse_application(db, caps, AP, payment.id, 424242, TEST_ACTOR_ID)

    def test_receipt_delete_cancels(self, db, caps, customer):
        payload = ARReceiptCreate(customer_id=customer.id, receipt_date=date(2024, 3, 1), receipt_amount=Decimal("20"))
        receipt, _ = engine.create_payment(db, caps, AR, payload, TEST_ACTOR_ID)
        assert receipt.status == "DRAFT"
        receipt, _ = engine.delete_payment(db, caps, AR, receipt.id, TEST_ACTOR_ID)
        assert receipt.status == "CANCELLED"


class TestUpdate:
    def test_committed_payment_is_read_only(self, db, caps, pay):
        payment = pay("10")
        with pytest.raises(CannotModifyCommitted):
            engine.update_payment(db, caps, AP, payment.id, APPaymentUpdate(notes="late"), TEST_ACTOR_ID)

    def test_draft_update_replaces_applications(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "10")], status="DRAFT")
        payload = APPaymentUpdate(notes="revised", applications=[app_in(invoice, "35")])
        payment, _ = engine.update_payment(db, caps, AP, payment.id, payload, TEST_ACTOR_ID)
        assert payment.notes == "revised"
        assert [a.applied_amount for a in payment.applications] == [Decimal("35.00")]
        assert payment.amount_applied == Decimal("35.00")
        assert invoice.amount_paid == Decimal("0.00")

    def test_amount_cannot_drop_below_applied(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "80")], status="DRAFT")
        with pytest.raises(OverApplication):
            engine.update_payment(db, caps, AP, payment.id, APPaymentUpdate(payment_amount=Decimal("50")),
                                  TEST_ACTOR_ID)

    def test_amount_change_keeps_applied_within_amount(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "80")], status="DRAFT")
        payment, _ = engine.update_payment(db, caps, AP, payment.id, APPaymentUpdate(payment_amount=Decimal("90")),
                                           TEST_ACTOR_ID)
        assert payment.amount_applied == Decimal("80.00")
        assert payment.unapplied_amount == Decimal("10.00")

    def test_update_to_paid_promotes(self, db, caps, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "70")], status="DRAFT")
        payment, _ = engine.update_payment(db, caps, AP, payment.id, APPaymentUpdate(status="paid"), TEST_ACTOR_ID)
        assert payment.status == "PAID"
        assert invoice.amount_paid == Decimal("70.00")

    def test_status_outside_book(self, db, caps, pay):
        payment = pay("10", status="DRAFT")
        with pytest.raises(InvalidStatus):
            engine.patch_payment_status(db, caps, AP, payment.id, "CANCELLED", TEST_ACTOR_ID)


class TestCreateChecks:
    def test_duplicate_number(self, pay):
        pay("10", number="CHK-1")
        with pytest.raises(DuplicateNumber):
            pay("10", number="CHK-1")

    def test_dto_rejects_non_positive_amount(self, supplier):
        with pytest.raises(pydantic.ValidationError):
            APPaymentCreate(supplier_id=supplier.id, payment_date=date(2024, 1, 1), payment_amount=Decimal("0"))

    def test_unknown_supplier(self, db, caps):
        payload = APPaymentCreate(supplier_id=555, payment_date=date(2024, 1, 1), payment_amount=Decimal("1"))
        with pytest.raises(NotFound):
            engine.create_payment(db, caps, AP, payload, TEST_ACTOR_ID)

    def test_receipt_amount_aliases(self, customer):
        payload = ARReceiptCreate.model_validate(
            {"customer_id": customer.id, "receipt_date": "2024-01-01", "amount_received": "12.5"}
        )
        assert payload.receipt_amount == Decimal("12.5")


class TestReadsAndRepair:
    def test_list_repairs_drifted_totals(self, db, pay, make_ap_invoice, captured_logs):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "40")])
        db.execute(update(APPayment).where(APPayment.id == payment.id).values(amount_applied=Decimal("0")))
        db.expire(payment)

        rows = engine.list_payments(db, AP)
        assert [r.id for r in rows] == [payment.id]
        assert payment.amount_applied == Decimal("40.00")
        assert payment.unapplied_amount == Decimal("60.00")
        assert any("read-repair" in r.getMessage() for r in captured_logs())

    def test_consistent_rows_are_left_alone(self, db, pay):
        payment = pay("10")
        assert engine.repair_applied_totals(db, AP, [payment]) == 0

    def test_list_filters(self, db, pay):
        paid = pay("10", number="CHK-100")
        draft = pay("10", number="CHK-200", status="DRAFT")
        assert [r.id for r in engine.list_payments(db, AP, status="draft")] == [draft.id]
        assert [r.id for r in engine.list_payments(db, AP, q="100")] == [paid.id]
        assert engine.list_payments(db, AP, from_date=date(2025, 1, 1)) == []

    def test_list_applications(self, db, pay, make_ap_invoice):
        invoice = make_ap_invoice("100.00")
        payment = pay("100", [app_in(invoice, "10"), app_in(invoice, "20")])
        apps = engine.list_applications(db, AP, payment.id)
        assert [a.applied_amount for a in apps] == [Decimal("10.00"), Decimal("20.00")]

    def test_draft_conflicts(self, db, pay, make_ap_invoice):
        invoice, other = make_ap_invoice("100.00"), make_ap_invoice("100.00")
        first = pay("100", [app_in(invoice, "10")], status="DRAFT")
        second = pay("100", [app_in(invoice, "20")], status="DRAFT", number="CHK-9")
        pay("100", [app_in(other, "5")])

        query = DraftConflictQuery.model_validate({"invoice_ids": [invoice.id, other.id], "exclude_payment_id": first.id})
        conflicts = engine.check_draft_conflicts(db, AP, query.invoice_ids, query.exclude_id)
        assert conflicts == [{
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "document_id": second.id,
            "document_number": "CHK-9",
        }]
        assert engine.check_draft_conflicts(db, AP, []) == []
