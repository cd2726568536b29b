import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PaytrackError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(PaytrackError):
    kind = "validation_error"
    status_code = 400


class ConflictError(PaytrackError):
    kind = "conflict"
    status_code = 409


class UnauthorizedError(PaytrackError):
    kind = "unauthorized"
    status_code = 401


class ForbiddenError(PaytrackError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(PaytrackError):
    kind = "not_found"
    status_code = 404


class TransientStoreError(PaytrackError):
    """Store timeout or connection failure; safe for the client to retry."""

    kind = "store_unavailable"
    status_code = 503


def error_response(status_code: int, kind: str, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "error_code": kind},
        headers=headers,
    )


async def paytrack_error_handler(request: Request, exc: PaytrackError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return error_response(exc.status_code, exc.kind, exc.message, headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return error_response(400, ValidationError.kind, "; ".join(problems) or "Invalid request")


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, PaytrackError.kind, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PaytrackError, paytrack_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
