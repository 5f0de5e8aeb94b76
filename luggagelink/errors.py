"""
Domain errors and the FastAPI handlers that render every failure as
``{"message": ...}``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class LuggageLinkError(Exception):
    """Base class for errors raised by the store and matching layer."""


class NotFoundError(LuggageLinkError):
    pass


class DuplicateEmailError(LuggageLinkError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already exists")


class InvalidTransitionError(LuggageLinkError):
    def __init__(self, kind: str, current: str, requested: str):
        self.kind = kind
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change {kind} from '{current}' to '{requested}'"
        )


def format_validation_errors(errors) -> str:
    """Flatten pydantic errors into one readable sentence."""
    parts = []
    for error in errors:
        msg = error.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        loc = [
            str(item)
            for item in error.get("loc", ())
            if item not in ("body", "query", "path")
        ]
        if loc:
            parts.append(f'{msg} at "{".".join(loc)}"')
        else:
            parts.append(msg)
    if not parts:
        return "Validation error"
    return "Validation error: " + "; ".join(parts)


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    return _message(400, format_validation_errors(exc.errors()))


async def _not_found_handler(request: Request, exc: NotFoundError):
    return _message(404, str(exc))


async def _duplicate_email_handler(request: Request, exc: DuplicateEmailError):
    return _message(400, str(exc))


async def _invalid_transition_handler(
    request: Request, exc: InvalidTransitionError
):
    return _message(409, str(exc))


async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _message(500, "Internal server error")


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(NotFoundError, _not_found_handler)
    app.add_exception_handler(DuplicateEmailError, _duplicate_email_handler)
    app.add_exception_handler(InvalidTransitionError, _invalid_transition_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
