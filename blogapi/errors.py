"""Error taxonomy for the auth subsystem and its FastAPI handlers."""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Any, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    DUPLICATE_EMAIL = "duplicate_email"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNVERIFIED = "unverified"
    ALREADY_VERIFIED = "already_verified"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"


class AuthError(Exception):
    code: ErrorCode = ErrorCode.SERVER_ERROR
    status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    default_detail: str = "Server error"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.detail = detail or self.default_detail
        self.context = dict(context) if context else None
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code.value, "detail": self.detail}
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(AuthError):
    code = ErrorCode.VALIDATION_ERROR
    status = HTTPStatus.BAD_REQUEST
    default_detail = "Invalid request"


class DuplicateEmail(AuthError):
    code = ErrorCode.DUPLICATE_EMAIL
    status = HTTPStatus.BAD_REQUEST
    default_detail = "User already exists"


class InvalidCredentials(AuthError):
    code = ErrorCode.INVALID_CREDENTIALS
    status = HTTPStatus.BAD_REQUEST
    default_detail = "Invalid credentials"


class Unverified(AuthError):
    code = ErrorCode.UNVERIFIED
    status = HTTPStatus.BAD_REQUEST
    default_detail = "Email not verified"


class AlreadyVerified(AuthError):
    code = ErrorCode.ALREADY_VERIFIED
    status = HTTPStatus.BAD_REQUEST
    default_detail = "Email already verified"


class InvalidToken(AuthError):
    code = ErrorCode.INVALID_TOKEN
    status = HTTPStatus.BAD_REQUEST
    default_detail = "Invalid token"


class TokenExpired(AuthError):
    code = ErrorCode.TOKEN_EXPIRED
    status = HTTPStatus.BAD_REQUEST
    default_detail = "Token expired"


class Unauthenticated(AuthError):
    code = ErrorCode.UNAUTHENTICATED
    status = HTTPStatus.UNAUTHORIZED
    default_detail = "Not authenticated"

    @classmethod
    def from_token_error(cls, exc: AuthError) -> "Unauthenticated":
        return cls(exc.detail, context={"reason": exc.code.value})


class NotFound(AuthError):
    code = ErrorCode.NOT_FOUND
    status = HTTPStatus.NOT_FOUND
    default_detail = "Not found"


class ServerError(AuthError):
    pass


class MailDeliveryError(ServerError):
    default_detail = "Could not send email"


async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.error(f"{exc.code.value} on {request.method} {request.url.path}: {exc.detail}")
    else:
        logger.info(f"{exc.code.value} on {request.method} {request.url.path}")
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    err = ValidationError(context={"errors": errors})
    return JSONResponse(status_code=err.status, content=err.to_dict())


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content=ServerError().to_dict(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, _auth_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
