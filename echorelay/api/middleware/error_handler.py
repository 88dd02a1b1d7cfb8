"""
Error envelope for the relay's REST routes.

Every failure leaves the API as an ``ErrorResponse``
(``{"detail", "code", "timestamp"}``), the same shape the relay sends in
``error`` events over the WebSocket. Client-side mistakes (unknown
session, bad path parameter) are logged at DEBUG; server faults at
WARNING or with a traceback.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from echorelay.core.exceptions import EchoRelayError
from echorelay.core.models import ErrorResponse

logger = logging.getLogger(__name__)


def _respond(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump())


def _describe_validation(exc: RequestValidationError) -> str:
    """Render ``[{'loc': ('path', 'session_id'), 'msg': ...}]`` as ``session_id: ...``."""
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("path", "query", "body"))
        parts.append(f"{field}: {err.get('msg', 'invalid')}" if field else err.get("msg", "invalid"))
    return "; ".join(parts) or "Invalid request"


def register_error_handlers(app: FastAPI) -> None:
    """Install the relay's exception handlers on ``app``."""

    @app.exception_handler(EchoRelayError)
    async def relay_error_handler(request: Request, exc: EchoRelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("%s on %s: %s", exc.code, request.url.path, exc.detail)
        else:
            logger.debug("%s on %s: %s", exc.code, request.url.path, exc.detail)
        return _respond(exc.status_code, ErrorResponse.from_exception(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = _describe_validation(exc)
        logger.debug("Rejected %s %s: %s", request.method, request.url.path, detail)
        return _respond(422, ErrorResponse.build("VALIDATION_ERROR", detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, _exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _respond(500, ErrorResponse.build("INTERNAL_ERROR", "Internal server error"))
