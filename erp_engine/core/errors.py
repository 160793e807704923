# erp_engine/core/errors.py
"""
Typed failures raised by the engine.

Each error carries a stable machine-readable ``kind`` (taxonomy bucket), a ``code``
(specific reason) and a human message. The HTTP layer maps ``http_status`` onto the
response; services never raise ``HTTPException`` directly.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    kind = "INTERNAL"
    code = "INTERNAL"
    http_status = 500

    def __init__(self, message: str, *, details: Any = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "msg": self.message,
            "details": self.details,
        }


# -------------------------
# Validation
# -------------------------
class ValidationError(EngineError):
    kind = "VALIDATION"
    code = "VALIDATION"
    http_status = 400


class InvalidStatus(ValidationError):
    code = "INVALID_STATUS"


# -------------------------
# Not found
# -------------------------
class NotFound(EngineError):
    kind = "NOT_FOUND"
    code = "NOT_FOUND"
    http_status = 404


class SequenceNotFound(NotFound):
    code = "SEQUENCE_NOT_FOUND"


class ConfigNotFound(NotFound):
    code = "CONFIG_NOT_FOUND"


# -------------------------
# Conflicts
# -------------------------
class Conflict(EngineError):
    kind = "CONFLICT"
    code = "CONFLICT"
    http_status = 409


class DuplicateNumber(Conflict):
    code = "DUPLICATE_NUMBER"


class OverApplication(Conflict):
    code = "OVER_APPLICATION"


class CannotModifyCommitted(Conflict):
    code = "CANNOT_MODIFY_COMMITTED"


class HasActiveApplications(Conflict):
    code = "HAS_ACTIVE_APPLICATIONS"


class ReferentialIntegrityError(Conflict):
    code = "REFERENTIAL_INTEGRITY"


class InternalError(EngineError):
    pass
