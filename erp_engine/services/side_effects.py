# erp_engine/services/side_effects.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class SideEffectResult:
    """
    Outcome of a secondary write (audit entry, inventory adjustment).

    The primary operation has already succeeded when one of these is produced;
    ok=False only says the side effect did not land.
    """
    name: str
    ok: bool = True
    skipped: bool = False
    error: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, name: str, **detail: Any) -> "SideEffectResult":
        return cls(name=name, ok=True, detail=detail)

    @classmethod
    def skip(cls, name: str, reason: str, **detail: Any) -> "SideEffectResult":
        return cls(name=name, ok=True, skipped=True, error=reason, detail=detail)

    @classmethod
    def failure(cls, name: str, exc: BaseException, **detail: Any) -> "SideEffectResult":
        return cls(name=name, ok=False, error=f"{type(exc).__name__}: {exc}", detail=detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ok": self.ok,
            "skipped": self.skipped,
            "error": self.error,
            "detail": self.detail,
        }


def report(results: List[SideEffectResult], operation: str, document_id: Any) -> List[SideEffectResult]:
    """Log every failed side effect of one operation; returns the results unchanged."""
    for r in results:
        if not r.ok:
            logger.warning("%s %s: side effect %s failed (%s)", operation, document_id, r.name, r.error)
    return results
