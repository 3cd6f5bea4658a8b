"""Error taxonomy and the handlers that render it.

Every error that reaches a client carries a fixed message. Causes are logged
server-side by whoever raises, never serialized into the response body.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .logging_config import get_logger

logger = get_logger("zappytalk.errors")


class GatewayError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class BadRequest(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class NotFound(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(GatewayError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class ConfigurationError(GatewayError):
    """Required secrets are missing. Always rendered as a generic 500."""

    default_message = "Server configuration error"


class DispatchError(GatewayError):
    """Token signing or remote agent dispatch failed."""

    default_message = "Failed to dispatch agent"


class InternalError(GatewayError):
    pass


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return BadRequest.default_message
    first = errors[0]
    # loc is ("body" | "query" | "path", field, ...)
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    msg = first.get("msg", "Invalid value")
    return f"{field}: {msg}" if field else msg


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    message = exc.message
    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error on {request.method} {request.url.path}: {exc.message}")
        message = ConfigurationError.default_message
    return JSONResponse(status_code=exc.status_code, content={"error": message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": _validation_message(exc)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": InternalError.default_message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the taxonomy handlers on an application."""
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
