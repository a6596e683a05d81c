import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_DENIAL = "You do not have access to this resource"
GENERIC_NOT_FOUND = "not found"


class RoofdeskError(Exception):
    """Base error; ``message`` is safe to show to the caller."""

    code = "ERROR"
    status_code = 400

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        # internal detail, logged but never rendered
        self.detail = detail
        super().__init__(detail or message)


class Unauthenticated(RoofdeskError):
    code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self, detail: str | None = None):
        super().__init__("Authentication required", detail)


class Unauthorized(RoofdeskError):
    code = "UNAUTHORIZED"
    status_code = 403

    def __init__(self, detail: str | None = None):
        super().__init__(GENERIC_DENIAL, detail)


class TenantMismatch(Unauthorized):
    """A scoped query returned a row the guard denies: filter and guard disagree."""


class NotFound(RoofdeskError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, detail: str | None = None):
        super().__init__(GENERIC_NOT_FOUND, detail)


class AlreadyResolved(RoofdeskError):
    code = "ALREADY_RESOLVED"
    status_code = 409

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"This document has already been responded to ({status})")


class InvalidTransition(RoofdeskError):
    code = "INVALID_TRANSITION"
    status_code = 409


class Expired(RoofdeskError):
    code = "EXPIRED"
    status_code = 410

    def __init__(self, message: str = "This document has expired and can no longer be answered"):
        super().__init__(message)


class ValidationError(RoofdeskError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


async def roofdesk_error_handler(request: Request, exc: RoofdeskError) -> JSONResponse:
    if isinstance(exc, TenantMismatch):
        logger.error("TENANT MISMATCH on %s %s: %s", request.method, request.url.path, exc.detail)
    elif isinstance(exc, Unauthorized):
        logger.info("denied %s %s: %s", request.method, request.url.path, exc.detail)
    body = {"code": exc.code, "message": exc.message}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    if isinstance(exc, TenantMismatch):
        # indistinguishable from an ordinary denial
        body["code"] = Unauthorized.code
    return JSONResponse(status_code=exc.status_code, content=body)
