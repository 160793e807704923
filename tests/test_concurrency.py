"""
Sequence allocation under concurrent writers on a file-backed database.
"""

import threading

import pytest

from erp_engine.db.session import Database
from erp_engine.models import DocumentNumberConfig
from erp_engine.services.numbering import generate_document_number, next_sequence_value, register_sequence

pytestmark = pytest.mark.concurrency

THREADS = 4
PER_THREAD = 25


@pytest.fixture
def file_database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'engine.db'}").open()
    database.create_all()
    with database.transaction() as db:
        register_sequence(db, "PO_HEADER_ID_SEQ", start=1)
        db.add(DocumentNumberConfig(document_type="RECEIPT", prefix="RCV-", suffix="", next_number=1,
                                    padding_width=6, is_active=True))
    yield database
    database.close()


def run_threads(target):
    errors = []

    def worker():
        try:
            target()
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(THREADS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []


def test_sequence_values_are_unique(file_database):
    seen = []
    lock = threading.Lock()

    def allocate():
        for _ in range(PER_THREAD):
            with file_database.transaction() as db:
                value = next_sequence_value(db, "PO_HEADER_ID_SEQ")
            with lock:
                seen.append(value)

    run_threads(allocate)
    assert sorted(seen) == list(range(1, THREADS * PER_THREAD + 1))


def test_document_numbers_are_unique(file_database):
    seen = []
    lock = threading.Lock()

    def allocate():
        for _ in range(PER_THREAD):
            with file_database.transaction() as db:
                number = generate_document_number(db, "RECEIPT")
            with lock:
                seen.append(number)

    run_threads(allocate)
    assert len(set(seen)) == THREADS * PER_THREAD
    assert max(seen) == f"RCV-{THREADS * PER_THREAD:06d}"
