# erp_engine/core/logging_setup.py
from __future__ import annotations

import logging
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """Attach one stream handler to the root logger. Safe to call more than once."""
    global _configured
    root = logging.getLogger()
    if level:
        root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)

    # SQL echo stays off unless someone asks for it explicitly
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
