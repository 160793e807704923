# erp_engine/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All engine tables (sequences, procurement, settlement, inventory, audit) inherit from this."""
    pass


def import_models() -> None:
    # Import all models so metadata is complete for create_all()
    from erp_engine.models import (  # noqa: F401
        audit,
        numbering,
        party,
        inventory,
        procurement,
        invoices,
        settlement,
    )
