"""
Rate limiting and domain-error handlers.

Every domain error renders as ``{"success": false, "error": <code>,
"detail": <message>}`` with the status code below.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from src.domain.exceptions import (
    AssignmentConflict,
    DispatchError,
    DispatchFailed,
    InvalidTransition,
    NotEligible,
    NotFound,
    TransientBackendError,
)

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

_STATUS_CODES: dict[type[DispatchError], int] = {
    NotFound: 404,
    InvalidTransition: 409,
    AssignmentConflict: 409,
    NotEligible: 422,
    TransientBackendError: 503,
    DispatchFailed: 503,
}


def status_code_for(exc: DispatchError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_CODES:
            return _STATUS_CODES[cls]
    return 400


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(DispatchError, dispatch_error_handler)
