"""Global exception handlers mapping the error taxonomy onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError

from tenantry_core.errors import DataIntegrityError, ReconciliationError, TransientError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_reconciliation_error_handler(app)
    _register_value_error_handler(app)
    _register_storage_unavailable_handler(app)
    _register_database_error_handler(app)


def _register_reconciliation_error_handler(app: FastAPI) -> None:
    @app.exception_handler(ReconciliationError)
    async def reconciliation_error_handler(request: Request, exc: ReconciliationError) -> JSONResponse:
        if isinstance(exc, DataIntegrityError):
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        elif isinstance(exc, TransientError):
            logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
        headers = {"Retry-After": "5"} if exc.retryable else None
        return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)


def _register_value_error_handler(app: FastAPI) -> None:
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid_request"})


def _register_storage_unavailable_handler(app: FastAPI) -> None:
    # Lost connections and lock timeouts are worth retrying; other driver errors are not.
    async def storage_unavailable_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.warning("Storage unavailable on %s: %s", request.url.path, exc.__class__.__name__)
        error = TransientError("Storage temporarily unavailable")
        return JSONResponse(
            status_code=error.http_status,
            content=error.to_response(),
            headers={"Retry-After": "5"},
        )

    app.add_exception_handler(OperationalError, storage_unavailable_handler)
    app.add_exception_handler(InterfaceError, storage_unavailable_handler)


def _register_database_error_handler(app: FastAPI) -> None:
    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error"},
        )
