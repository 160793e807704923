# erp_engine/schemas/common.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _norm_status(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip().upper()
    return v or None


class StatusPatch(BaseModel):
    """Body of every PATCH .../status endpoint. Allowed values are checked per entity."""
    status: Optional[str] = None
    approval_status: Optional[str] = None

    @field_validator("status", "approval_status", mode="before")
    @classmethod
    def _upper(cls, v):
        return _norm_status(v)


class SideEffectOut(BaseModel):
    name: str
    ok: bool
    skipped: bool = False
    error: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


class MessageOut(BaseModel):
    message: str
    side_effects: List[SideEffectOut] = Field(default_factory=list)
