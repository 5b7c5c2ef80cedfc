"""
Prometheus metrics for application monitoring.
"""
import time

from fastapi import Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


# Request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Dispatch metrics
delivery_assignments_total = Counter(
    'delivery_assignments_total',
    'Rider assignment attempts by outcome',
    ['result']
)

delivery_transitions_total = Counter(
    'delivery_transitions_total',
    'Committed delivery status transitions',
    ['status']
)

rider_claims_total = Counter(
    'rider_claims_total',
    'Rider claim attempts by outcome',
    ['result']
)

rider_release_failures_total = Counter(
    'rider_release_failures_total',
    'Compensating rider releases that exhausted their retries'
)

delivery_notifications_total = Counter(
    'delivery_notifications_total',
    'Delivery notification send attempts',
    ['channel', 'result']
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            # Label by route template so ids in the path do not explode cardinality
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.time() - start_time)

        return response


def get_metrics_response(openmetrics: bool = False) -> Response:
    """
    Get Prometheus metrics response.

    Args:
        openmetrics: If True, return OpenMetrics format, else Prometheus format
    """
    if openmetrics:
        content = generate_latest_openmetrics()
        content_type = "application/openmetrics-text; version=1.0.0; charset=utf-8"
    else:
        content = generate_latest()
        content_type = CONTENT_TYPE_LATEST

    return Response(content=content, media_type=content_type)
