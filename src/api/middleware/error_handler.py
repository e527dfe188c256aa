"""Exception handlers. Every error body is ``{"error", "message", "request_id"}``."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.fraud.exceptions import TrustEngineError

logger = structlog.get_logger()

# Builtin exceptions that reach the app boundary with a caller-safe message
CLIENT_ERRORS: dict[type[Exception], tuple[int, str]] = {
    ValueError: (400, "bad_request"),
    PermissionError: (403, "forbidden"),
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def error_response(status_code: int, error: str, message: str, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "request_id": request_id},
    )


async def trust_engine_exception_handler(request: Request, exc: TrustEngineError) -> JSONResponse:
    request_id = _request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("trust_engine_error", error=exc.error_code, message=exc.message, **exc.context)
    return error_response(exc.status_code, exc.error_code, exc.message, request_id)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    for exc_type, (status_code, error) in CLIENT_ERRORS.items():
        if isinstance(exc, exc_type):
            logger.warning(error, error_type=type(exc).__name__, message=str(exc))
            return error_response(status_code, error, str(exc), request_id)

    # Internal details stay in the log, never in the body
    logger.exception("unhandled_exception", path=request.url.path)
    return error_response(
        500, "internal_server_error", "An unexpected error occurred", request_id
    )
