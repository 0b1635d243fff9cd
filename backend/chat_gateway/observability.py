import time

from fastapi import APIRouter
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQ_COUNTER = Counter("http_requests_total", "Total HTTP Requests", ["method", "path", "status"])
REQ_LATENCY = Histogram("http_request_latency_seconds", "Request latency", ["method", "path"])

GENERATIONS = Counter(
    "chat_generations_total", "Generation calls by terminal outcome", ["model", "outcome"]
)
REJECTIONS = Counter("chat_rejections_total", "Requests rejected before generation", ["code"])
STREAM_FALLBACKS = Counter(
    "chat_stream_fallbacks_total", "Responses served without resumability", ["reason"]
)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            latency = time.perf_counter() - start
            # Route templates keep label cardinality bounded
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            method = request.method
            REQ_COUNTER.labels(method, path, status).inc()
            REQ_LATENCY.labels(method, path).observe(latency)


metrics_router = APIRouter(tags=["metrics"])


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
