"""
Request context middleware: request id and tenant go into every log line of a request
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from bizflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

# Polled endpoints, logged at DEBUG
QUIET_PATHS = ("/health", "/metrics")


class LoggingContextMiddleware(BaseHTTPMiddleware):
    """Binds request id, tenant and route to the logging context"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        path = request.url.path
        LoggingConfig.set_context(
            request_id=request_id,
            method=request.method,
            path=path,
            tenant_id=request.headers.get("x-tenant-id"),
        )
        log = logger.debug if path.startswith(QUIET_PATHS) else logger.info

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {path} raised {type(e).__name__}",
                exc_info=True,
                extra={"duration_ms": int((time.perf_counter() - started) * 1000)},
            )
            raise
        else:
            duration_ms = int((time.perf_counter() - started) * 1000)
            log(
                f"{request.method} {path} -> {response.status_code}",
                extra={"status_code": response.status_code, "duration_ms": duration_ms},
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            LoggingConfig.clear_context()
