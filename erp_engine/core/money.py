# erp_engine/core/money.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0")
_Q2 = Decimal("0.01")
_Q4 = Decimal("0.0001")


def D(v: Any) -> Decimal:
    try:
        if v is None:
            return Decimal("0")
        if isinstance(v, Decimal):
            return v
        return Decimal(str(v).strip())
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def parse_decimal(v: Any) -> Optional[Decimal]:
    """Like D() but returns None for anything non-numeric instead of zero."""
    if v is None or isinstance(v, bool):
        return None
    try:
        out = v if isinstance(v, Decimal) else Decimal(str(v).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not out.is_finite():
        return None
    return out


def money2(v: Any) -> Decimal:
    return D(v).quantize(_Q2, rounding=ROUND_HALF_UP)


def qty4(v: Any) -> Decimal:
    return D(v).quantize(_Q4, rounding=ROUND_HALF_UP)
