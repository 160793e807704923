# erp_engine/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt

from erp_engine.core.config import settings
from erp_engine.db.capabilities import SchemaCapabilities
from erp_engine.db.session import Database


@dataclass
class Actor:
    id: Optional[int]
    username: Optional[str] = None


# =========================================================
# DATABASE
# =========================================================
def get_database(request: Request) -> Database:
    database: Optional[Database] = getattr(request.app.state, "db", None)
    if database is None or not database.is_open:
        raise HTTPException(status_code=503, detail="Database not available")
    return database


def get_capabilities(database: Database = Depends(get_database)) -> SchemaCapabilities:
    return database.capabilities


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_actor(authorization: Optional[str] = Header(None)) -> Actor:
    """
    The user behind the request, from a Bearer JWT ("sub" holds the user id).
    Only the id is used, to stamp created_by / approved_by / audit rows.
    """
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = _decode_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    return Actor(id=user_id, username=payload.get("username"))
