"""Monitoring and observability"""
import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from kafkachain.utils.logger import logger


# ===== Prometheus Metrics =====

# API metrics
http_request_duration_seconds = Histogram(
    "kafkachain_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware for request latency collection on the inspection API"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and collect metrics"""
        start_time = time.time()
        method = request.method
        endpoint = request.url.path

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {method} {endpoint}",
                extra={"error": str(e)},
                exc_info=True
            )
            raise

        duration = time.time() - start_time
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response

