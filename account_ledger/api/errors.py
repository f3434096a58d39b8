"""
Error to status code mapping
"""

from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import ErrorKind, LedgerError
from ..logging_config import get_logger, log_action


logger = get_logger("account_ledger.api")

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_PERMITTED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MALFORMED_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UNCLASSIFIED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(kind: ErrorKind, message: str) -> JSONResponse:
    status_code = STATUS_BY_KIND[kind]
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": message,
            "kind": kind.value,
            "status_code": status_code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    log_action(
        logger, "info", f"Request failed: {exc.message}",
        action="error", resource=request.url.path,
        extra={"kind": exc.kind.value}
    )
    return error_response(exc.kind, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
    return error_response(ErrorKind.MALFORMED_INPUT, "; ".join(messages) or "Malformed request")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(ErrorKind.UNCLASSIFIED, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
