# campus_escrow/api/errors.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from campus_escrow.core.errors import (
    ConflictExceededError,
    EscrowError,
    InvalidStateError,
    InvariantViolationError,
)

logger = logging.getLogger(__name__)


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    if isinstance(exc, InvariantViolationError):
        # the store already logged and quarantined; never leak details
        logger.critical("[api] invariant violation request_id=%s: %s", rid, exc.message)
        body = {"code": exc.code, "message": "Internal consistency check failed; the project is held for inspection."}
    else:
        logger.info("[api] %s request_id=%s: %s", exc.code, rid, exc.message)
        body = exc.to_dict()

    headers = {"Retry-After": "1"} if isinstance(exc, ConflictExceededError) else None
    return JSONResponse(status_code=exc.http_status, content=body, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and parameters share the error envelope; the status stays 422."""
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    where = ".".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid request: {where}: {first.get('msg', 'malformed input')}" if where else "Invalid request."
    body = InvalidStateError(message, details={"errors": errors}).to_dict()
    return JSONResponse(status_code=422, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EscrowError, escrow_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
