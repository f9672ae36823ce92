"""Global error handler: consistent JSON error responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from otazumi.auth.errors import AccountError, FailureKind

logger = structlog.get_logger()

FAILURE_STATUS: dict[FailureKind, int] = {
    FailureKind.EMAIL_TAKEN: 409,
    FailureKind.USERNAME_TAKEN: 409,
    FailureKind.SIGNUP_LIMIT_REACHED: 429,
    FailureKind.INVALID_CREDENTIALS: 401,
    FailureKind.WRONG_CURRENT_PASSWORD: 401,
    FailureKind.WRONG_PASSWORD: 401,
    FailureKind.NOT_FOUND: 404,
    FailureKind.INVALID_OR_EXPIRED_TOKEN: 400,
    FailureKind.ALREADY_VERIFIED: 400,
}


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(AccountError)
    async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
        """Translate an account failure kind into its HTTP status."""
        status_code = FAILURE_STATUS.get(exc.kind, 400)
        logger.info("account_operation_failed", path=request.url.path, kind=exc.kind.value, status=status_code)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent JSON format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle validation errors with consistent JSON format."""
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
