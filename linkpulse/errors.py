"""
Error taxonomy and FastAPI exception handlers.

Every typed error carries an HTTP status and a machine-readable kind.
API endpoints render them as {"error": kind, "message": text}. The
redirect endpoint never renders these; it always answers with the
generic not-found page.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import structlog

logger = structlog.get_logger()


class LinkpulseError(Exception):
    status_code: int = 500
    kind: str = "internal_error"

    def __init__(self, message: str, *, headers: dict | None = None):
        super().__init__(message)
        self.message = message
        self.headers = headers

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(LinkpulseError):
    """Bad input the user can fix."""
    status_code = 400
    kind = "validation_error"


class Unauthorized(LinkpulseError):
    status_code = 401
    kind = "unauthorized"


class Forbidden(LinkpulseError):
    status_code = 403
    kind = "forbidden"


class NotFound(LinkpulseError):
    status_code = 404
    kind = "not_found"


class RateLimited(LinkpulseError):
    status_code = 429
    kind = "rate_limited"


class Conflict(LinkpulseError):
    status_code = 500
    kind = "conflict"


class CodeSpaceExhausted(Conflict):
    """Short code generation kept colliding. Practically unreachable at 62^7."""
    kind = "code_space_exhausted"


class TransientStoreError(LinkpulseError):
    """Timeout or lost connection talking to the store."""
    status_code = 503
    kind = "store_unavailable"


class DerivationFailure(LinkpulseError):
    """Geo-IP or user-agent lookup failed. Logged and degraded, never surfaced."""
    kind = "derivation_failure"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LinkpulseError)
    async def linkpulse_error_handler(request: Request, exc: LinkpulseError) -> JSONResponse:
        if isinstance(exc, Conflict):
            logger.error(exc.kind, path=request.url.path, message=exc.message, alert=True)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid request')}" if field else "invalid request"
        return JSONResponse(
            status_code=ValidationError.status_code,
            content={"error": ValidationError.kind, "message": message},
        )
