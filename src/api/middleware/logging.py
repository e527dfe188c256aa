"""Request logging: binds a request id and logs one ``http_request`` event per call."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.config import settings

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
HEALTH_CHECK_PATHS = frozenset({"/health", "/ready"})


def _log_method(path: str, status_code: int, duration_ms: float):
    if status_code >= 500:
        return logger.error
    if status_code >= 400 or duration_ms > settings.slow_request_ms:
        return logger.warning
    if path in HEALTH_CHECK_PATHS:
        return logger.debug
    return logger.info


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            _log_method(request.url.path, response.status_code, duration_ms)(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
