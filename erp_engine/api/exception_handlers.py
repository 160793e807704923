# erp_engine/api/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from erp_engine.api.response import err
from erp_engine.core.config import settings
from erp_engine.core.errors import EngineError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return err(
            msg=exc.message,
            status_code=exc.http_status,
            kind=exc.kind,
            code=exc.code,
            details=exc.details,
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return err(
            msg="Operation violates a data integrity constraint",
            status_code=409,
            kind="CONFLICT",
            code="REFERENTIAL_INTEGRITY",
            details=str(exc.orig) if settings.EXPOSE_ERROR_DETAILS else None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        kind = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND"}.get(exc.status_code, "HTTP")
        return err(msg=msg, status_code=exc.status_code, kind=kind, code=kind)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(
            msg="Validation error",
            status_code=422,
            kind="VALIDATION",
            code="VALIDATION",
            details=exc.errors(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return err(
            msg="Internal server error",
            status_code=500,
            kind="INTERNAL",
            code="INTERNAL",
            details=f"{type(exc).__name__}: {exc}" if settings.EXPOSE_ERROR_DETAILS else None,
        )
