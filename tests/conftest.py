"""
Pytest fixtures for the erp_engine test suite.

Provides:
- an in-memory SQLite Database (StaticPool) with all tables created and seeded
- a session per test that is rolled back afterwards
- factories for purchase orders and invoices
- a TestClient wired to the same Database with authentication stubbed out
"""

import logging
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from erp_engine.api.deps import Actor, current_actor
from erp_engine.db.session import Database
from erp_engine.main import create_app
from erp_engine.models import (
    Customer,
    DocumentNumberConfig,
    InventoryItem,
    InventoryItemDetail,
    Supplier,
)
from erp_engine.schemas.invoices import APInvoiceCreate, ARInvoiceCreate, ARInvoiceLineIn
from erp_engine.schemas.procurement import POCreate, POLineIn
from erp_engine.services import invoices as invoice_svc
from erp_engine.services import procurement_lifecycle as docs
from erp_engine.services.numbering import register_sequence

# Test actor id for every write
TEST_ACTOR_ID = 7

SEQUENCES = (
    "PO_REQUISITION_ID_SEQ",
    "PO_LINE_ID_SEQ",
    "PO_AGREEMENT_ID_SEQ",
    "PO_AGREEMENT_LINE_ID_SEQ",
    "PO_HEADER_ID_SEQ",
    "PO_RECEIPT_ID_SEQ",
    "PO_RECEIPT_LINE_ID_SEQ",
    "AR_INVOICE_ID_SEQ",
    "AR_INVOICE_LINE_ID_SEQ",
    "AP_PAYMENT_ID_SEQ",
    "AP_PAYMENT_APPLICATION_ID_SEQ",
    "AR_RECEIPT_ID_SEQ",
    "AR_RECEIPT_APPLICATION_ID_SEQ",
)

NUMBER_CONFIGS = (
    ("REQUISITION", "REQ-"),
    ("AGREEMENT", "AGR-"),
    ("PURCHASE_ORDER", "PO-"),
    ("RECEIPT", "RCV-"),
)


def pytest_configure(config):
    config.addinivalue_line("markers", "api: exercises the HTTP layer through TestClient")
    config.addinivalue_line("markers", "concurrency: runs several threads against a file database")


def seed(db):
    for name in SEQUENCES:
        register_sequence(db, name, start=1)
    for document_type, prefix in NUMBER_CONFIGS:
        db.add(DocumentNumberConfig(
            document_type=document_type, prefix=prefix, suffix="", next_number=1, padding_width=6, is_active=True,
        ))

    db.add(Supplier(id=1, supplier_number="SUP-001", supplier_name="Acme Supplies"))
    db.add(Customer(id=1, customer_number="CUS-001", customer_name="Globex Retail"))

    # 10 boxes of 12 packets
    widget = InventoryItem(item_code="WIDGET-01", item_name="Widget", uom="EA")
    widget.details.append(InventoryItemDetail(box_quantity=Decimal("10"), packet_quantity=Decimal("12"), version=1))
    # packets-per-box not known yet
    bolt = InventoryItem(item_code="BOLT-01", item_name="Bolt", uom="EA")
    bolt.details.append(InventoryItemDetail(box_quantity=Decimal("0"), packet_quantity=Decimal("0"), version=1))
    db.add_all([widget, bolt])
    db.flush()


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture
def captured_logs(caplog):
    """
    Records from erp_engine loggers at DEBUG and above.

    Usage::

        def test_something(captured_logs):
            ...
            assert any("skipping" in r.getMessage() for r in captured_logs())
    """
    caplog.set_level(logging.DEBUG, logger="erp_engine")

    def _records():
        return [r for r in caplog.records if r.name.startswith("erp_engine")]

    return _records


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database():
    database = Database("sqlite://").open()
    database.create_all()
    with database.transaction() as db:
        seed(db)
    yield database
    database.close()


@pytest.fixture
def db(database):
    session = database.new_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def caps(database):
    return database.capabilities


@pytest.fixture
def supplier(db):
    return db.get(Supplier, 1)


@pytest.fixture
def customer(db):
    return db.get(Customer, 1)


@pytest.fixture
def stock_of(db):
    """Active box_quantity for an item, read fresh from the database."""
    def _read(item_code):
        db.expire_all()
        item = db.query(InventoryItem).filter(InventoryItem.item_code == item_code).one()
        return item.active_detail.box_quantity

    return _read


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_po(db, caps, supplier):
    def _make(lines=None, **header):
        lines = lines or [
            POLineIn(item_code="WIDGET-01", item_name="Widget", quantity=Decimal("10"), unit_price=Decimal("10")),
        ]
        payload = POCreate(supplier_id=supplier.id, lines=lines, **header)
        po, _ = docs.create_document(db, caps, docs.PURCHASE_ORDER, payload, TEST_ACTOR_ID)
        return po

    return _make


@pytest.fixture
def make_ap_invoice(db, caps, supplier):
    counter = {"n": 0}

    def _make(total="100.00", status=None):
        counter["n"] += 1
        payload = APInvoiceCreate(
            supplier_id=supplier.id,
            invoice_number=f"AP-INV-{counter['n']:03d}",
            total_amount=Decimal(total),
            status=status,
        )
        invoice, _ = invoice_svc.create_ap_invoice(db, caps, payload, TEST_ACTOR_ID)
        return invoice

    return _make


@pytest.fixture
def make_ar_invoice(db, caps, customer):
    counter = {"n": 0}

    def _make(lines=None, status="OPEN"):
        counter["n"] += 1
        lines = lines or [ARInvoiceLineIn(item_name="Service", quantity=Decimal("1"), unit_price=Decimal("100"))]
        payload = ARInvoiceCreate(
            customer_id=customer.id,
            invoice_number=f"AR-INV-{counter['n']:03d}",
            lines=lines,
            status=status,
        )
        invoice, _ = invoice_svc.create_ar_invoice(db, caps, payload, TEST_ACTOR_ID)
        return invoice

    return _make


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
def client(database):
    app = create_app()
    app.state.db = database
    app.dependency_overrides[current_actor] = lambda: Actor(id=TEST_ACTOR_ID, username="tester")
    with TestClient(app) as c:
        yield c
