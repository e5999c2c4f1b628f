"""FastAPI middleware: request correlation, domain error mapping and CORS.

Middleware stack (outermost first):
    1. RequestIDMiddleware - binds X-Request-ID (and the acting user) to the
       log context and logs one line per finished request
    2. ErrorHandlerMiddleware - turns domain exceptions into {"error", "message"}
       bodies with the status code of their category
    3. CORSMiddleware
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from escrow_exchange.domain.exceptions import (
    AuthorizationError,
    DuplicateOperationError,
    EscrowExchangeError,
    InsufficientFundsError,
    NotFoundError,
    StateConflictError,
    TransientStoreError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# First match wins, so subclasses must precede their bases.
ERROR_STATUS: tuple[tuple[type[EscrowExchangeError], int], ...] = (
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (StateConflictError, 409),
    (DuplicateOperationError, 409),
    (ValidationError, 422),
    (InsufficientFundsError, 422),
    (TransientStoreError, 503),
)


def status_for(exc: EscrowExchangeError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Correlate every log line of a request and echo X-Request-ID back."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        if user_id := request.headers.get("X-User-Id"):
            structlog.contextvars.bind_contextvars(user_id=user_id)

        started = time.perf_counter()
        response = await call_next(request)
        logger.debug(
            "request.completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Map domain exceptions to JSON error responses; anything else is a 500."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowExchangeError as exc:
            status_code = status_for(exc)
            log = logger.error if status_code >= 500 else logger.warning
            fields = {"code": exc.code, "error": exc.message, "status": status_code}
            if isinstance(exc, StateConflictError):
                fields.update(current=exc.current_status, operation=exc.operation)
            log("request.rejected", **fields)
            return JSONResponse(
                status_code=status_code,
                content={"error": exc.code, "message": exc.message},
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
            )


def setup_middleware(app: FastAPI) -> None:
    """Register the middleware stack; the last one added runs first."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
