"""
AR invoices (sales side stock hooks, status repair) and AP invoices.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from erp_engine.core.errors import Conflict, DuplicateNumber, InvalidStatus, NotFound, ValidationError
from erp_engine.models import APInvoice, ARInvoice
from erp_engine.schemas.common import StatusPatch
from erp_engine.schemas.invoices import APInvoiceCreate, ARInvoiceCreate, ARInvoiceLineIn, ARInvoiceUpdate
from erp_engine.services import invoices as svc
from erp_engine.services.invoice_balances import derive_invoice_status

from conftest import TEST_ACTOR_ID


def widget_line(qty):
    return ARInvoiceLineIn(item_code="WIDGET-01", item_name="Widget", quantity=Decimal(qty),
                           unit_price=Decimal("5"), tax_rate=Decimal("20"))


class TestARCreate:
    def test_totals_and_sequence_ids(self, make_ar_invoice):
        invoice = make_ar_invoice(lines=[widget_line("12"), ARInvoiceLineIn(item_name="Fee", unit_price=Decimal("3"))])
        assert [li.line_number for li in invoice.lines] == [1, 2]
        assert invoice.subtotal == Decimal("63.00")
        assert invoice.tax_amount == Decimal("12.00")
        assert invoice.total_amount == Decimal("75.00")
        assert invoice.id == 1

    def test_sale_takes_stock(self, make_ar_invoice, stock_of):
        make_ar_invoice(lines=[widget_line("12")])
        assert stock_of("WIDGET-01") == Decimal("9.00")

    def test_cancelled_on_create_takes_no_stock(self, make_ar_invoice, stock_of):
        make_ar_invoice(lines=[widget_line("12")], status="CANCELLED")
        assert stock_of("WIDGET-01") == Decimal("10.00")

    def test_default_status_is_draft(self, db, caps, customer):
        invoice, _ = svc.create_ar_invoice(db, caps, ARInvoiceCreate(customer_id=customer.id), TEST_ACTOR_ID)
        assert invoice.status == "DRAFT"

    def test_unknown_customer(self, db, caps):
        with pytest.raises(NotFound):
            svc.create_ar_invoice(db, caps, ARInvoiceCreate(customer_id=404), TEST_ACTOR_ID)

    def test_bad_status(self, db, caps, customer):
        with pytest.raises(InvalidStatus):
            svc.create_ar_invoice(db, caps, ARInvoiceCreate(customer_id=customer.id, status="SETTLED"), TEST_ACTOR_ID)

    def test_duplicate_number(self, make_ar_invoice, db, caps, customer):
        invoice = make_ar_invoice()
        payload = ARInvoiceCreate(customer_id=customer.id, invoice_number=invoice.invoice_number)
        with pytest.raises(DuplicateNumber):
            svc.create_ar_invoice(db, caps, payload, TEST_ACTOR_ID)


class TestARUpdate:
    def test_line_replacement_moves_stock_by_difference(self, db, caps, make_ar_invoice, stock_of):
        invoice = make_ar_invoice(lines=[widget_line("12")])
        invoice, effects = svc.update_ar_invoice(
            db, caps, invoice.id, ARInvoiceUpdate(lines=[widget_line("6")]), TEST_ACTOR_ID,
        )
        assert all(e.ok for e in effects)
        assert invoice.total_amount == Decimal("36.00")
        assert stock_of("WIDGET-01") == Decimal("9.50")

    def test_total_cannot_drop_below_paid(self, db, caps, make_ar_invoice):
        invoice = make_ar_invoice(lines=[widget_line("12")])
        invoice.amount_paid = Decimal("70")
        db.flush()
        with pytest.raises(ValidationError):
            svc.update_ar_invoice(db, caps, invoice.id, ARInvoiceUpdate(lines=[widget_line("1")]), TEST_ACTOR_ID)

    def test_void_invoice_is_read_only(self, db, caps, make_ar_invoice):
        invoice = make_ar_invoice()
        svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(status="VOID"), TEST_ACTOR_ID)
        with pytest.raises(Conflict):
            svc.update_ar_invoice(db, caps, invoice.id, ARInvoiceUpdate(notes="x"), TEST_ACTOR_ID)


class TestARStatus:
    def test_cancel_restores_and_reopen_reduces(self, db, caps, make_ar_invoice, stock_of):
        invoice = make_ar_invoice(lines=[widget_line("24")])
        assert stock_of("WIDGET-01") == Decimal("8.00")

        svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(status="cancelled"), TEST_ACTOR_ID)
        assert stock_of("WIDGET-01") == Decimal("10.00")

        # VOID from CANCELLED: both inactive, no movement
        svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(status="VOID"), TEST_ACTOR_ID)
        assert stock_of("WIDGET-01") == Decimal("10.00")

        svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(status="OPEN"), TEST_ACTOR_ID)
        assert stock_of("WIDGET-01") == Decimal("8.00")

    def test_approval_only(self, db, caps, make_ar_invoice):
        invoice = make_ar_invoice()
        invoice, _ = svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(approval_status="approved"), 1)
        assert invoice.approval_status == "APPROVED"
        assert invoice.status == "OPEN"

    def test_paid_on_unpaid_invoice_stays_open(self, db, caps, make_ar_invoice):
        invoice = make_ar_invoice()
        invoice, _ = svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(status="PAID"), 1)
        assert invoice.status == "OPEN"
        assert svc.get_ar_invoice(db, invoice.id).status == "OPEN"

    def test_validation(self, db, caps, make_ar_invoice):
        invoice = make_ar_invoice()
        with pytest.raises(ValidationError):
            svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(), 1)
        with pytest.raises(InvalidStatus):
            svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(status="CLOSED"), 1)
        with pytest.raises(InvalidStatus):
            svc.patch_ar_invoice_status(db, caps, invoice.id, StatusPatch(approval_status="SURE"), 1)


class TestStatusRepair:
    def test_get_repairs_stale_status(self, db, make_ar_invoice):
        invoice = make_ar_invoice()
        db.execute(update(ARInvoice).where(ARInvoice.id == invoice.id).values(amount_paid=Decimal("100")))
        db.expire(invoice)
        assert svc.get_ar_invoice(db, invoice.id).status == "PAID"

    def test_list_repairs_and_filters(self, db, make_ar_invoice):
        make_ar_invoice()
        make_ar_invoice()
        db.execute(update(ARInvoice).values(status="PAID"))
        db.expire_all()
        rows = svc.list_ar_invoices(db)
        # nothing was paid: both fall back to OPEN
        assert {r.status for r in rows} == {"OPEN"}
        assert svc.list_ar_invoices(db, status="PAID") == []

    def test_terminal_statuses_not_repaired(self, db, make_ar_invoice):
        invoice = make_ar_invoice(status="DRAFT")
        assert svc.get_ar_invoice(db, invoice.id).status == "DRAFT"

    def test_tolerance(self):
        invoice = APInvoice(total_amount=Decimal("100.00"), amount_paid=Decimal("99.99"), status="OPEN")
        assert derive_invoice_status(invoice) == "PAID"
        invoice.amount_paid = Decimal("99.98")
        assert derive_invoice_status(invoice) == "OPEN"


class TestAPInvoices:
    def test_total_defaults_to_subtotal_plus_tax(self, db, caps, supplier):
        payload = APInvoiceCreate(supplier_id=supplier.id, subtotal=Decimal("80"), tax_amount=Decimal("8"))
        invoice, _ = svc.create_ap_invoice(db, caps, payload, TEST_ACTOR_ID)
        assert invoice.total_amount == Decimal("88.00")
        assert invoice.status == "OPEN"

    def test_po_must_exist(self, db, caps, supplier):
        with pytest.raises(NotFound):
            svc.create_ap_invoice(db, caps, APInvoiceCreate(supplier_id=supplier.id, po_id=77), TEST_ACTOR_ID)

    def test_list_by_supplier(self, db, make_ap_invoice):
        invoice = make_ap_invoice()
        assert [i.id for i in svc.list_ap_invoices(db, supplier_id=invoice.supplier_id)] == [invoice.id]
        assert svc.list_ap_invoices(db, supplier_id=999) == []

    def test_status_patch(self, db, caps, make_ap_invoice):
        invoice = make_ap_invoice()
        invoice, _ = svc.patch_ap_invoice_status(db, caps, invoice.id, StatusPatch(status="VOID"), 1)
        assert invoice.status == "VOID"

    def test_paid_status_follows_balance(self, db, caps, make_ap_invoice):
        invoice = make_ap_invoice()
        invoice, _ = svc.patch_ap_invoice_status(db, caps, invoice.id, StatusPatch(status="PAID"), 1)
        assert (invoice.status, invoice.amount_due) == ("OPEN", Decimal("100.00"))

        invoice.amount_paid = Decimal("100.00")
        invoice.status = "CANCELLED"
        invoice, _ = svc.patch_ap_invoice_status(db, caps, invoice.id, StatusPatch(status="OPEN"), 1)
        assert invoice.status == "PAID"
