"""
Prometheus HTTP metrics middleware
"""
import re
import time
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from bizflow.core.metrics import (http_errors_total,
                                  http_request_duration_seconds,
                                  http_requests_total)

UUID_SEGMENT = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def normalize_endpoint(path: str) -> str:
    """Collapse UUID path segments to {id} so metrics aggregate per route"""
    return "/".join("{id}" if UUID_SEGMENT.match(part) else part for part in path.split("/"))


def record_request(method: str, path: str, status_code: int, duration: float,
                   error_type: Optional[str] = None) -> None:
    labels = {"method": method, "endpoint": normalize_endpoint(path), "status_code": str(status_code)}
    http_requests_total.labels(**labels).inc()
    http_request_duration_seconds.labels(**labels).observe(duration)
    if status_code >= 400:
        http_errors_total.labels(**labels, error_type=error_type or f"http_{status_code}").inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests, errors and latency per normalized endpoint"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            record_request(request.method, request.url.path, 500, time.perf_counter() - started, type(e).__name__)
            raise
        record_request(request.method, request.url.path, response.status_code, time.perf_counter() - started)
        return response
