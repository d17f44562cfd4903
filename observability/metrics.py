"""Prometheus metrics for siteqa."""

import logging
import re
import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Custom registry so tests and multiple apps do not collide with the default one
siteqa_registry = CollectorRegistry()

request_count = Counter(
    'siteqa_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=siteqa_registry
)

request_duration = Histogram(
    'siteqa_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=siteqa_registry
)

pages_indexed = Counter(
    'siteqa_pages_indexed_total',
    'Pages processed by the indexer, by outcome',
    ['status'],
    registry=siteqa_registry
)

chunks_written = Counter(
    'siteqa_chunks_written_total',
    'Chunks written to the store',
    registry=siteqa_registry
)

questions_answered = Counter(
    'siteqa_questions_total',
    'Questions answered, by resolution decision',
    ['decision'],
    registry=siteqa_registry
)

question_duration = Histogram(
    'siteqa_question_duration_seconds',
    'End-to-end question latency in seconds',
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0],
    registry=siteqa_registry
)

upstream_failures = Counter(
    'siteqa_upstream_failures_total',
    'Failed calls to external services',
    ['service'],
    registry=siteqa_registry
)

retrieval_escalations = Counter(
    'siteqa_retrieval_escalations_total',
    'Low-confidence retrieval rescans, by mode',
    ['mode'],
    registry=siteqa_registry
)


def record_page_indexed(status: str, chunk_count: int = 0) -> None:
    pages_indexed.labels(status=status).inc()
    if chunk_count:
        chunks_written.inc(chunk_count)


def record_question(decision: str, duration: float) -> None:
    questions_answered.labels(decision=decision).inc()
    question_duration.observe(duration)


def record_upstream_failure(service: str) -> None:
    upstream_failures.labels(service=service).inc()


def record_escalation(mode: str) -> None:
    retrieval_escalations.labels(mode=mode).inc()


def _normalize_endpoint(path: str) -> str:
    """Collapse ids in the path to keep label cardinality bounded."""
    path = re.sub(r'/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '/{uuid}', path)
    path = re.sub(r'/[0-9a-f]{32}', '/{id}', path)
    return re.sub(r'/\d+', '/{id}', path)


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Record request metrics and expose ``GET /metrics``."""

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        endpoint = _normalize_endpoint(request.url.path)
        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            request_count.labels(
                method=request.method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            request_duration.labels(method=request.method, endpoint=endpoint).observe(
                time.time() - start_time
            )

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(siteqa_registry), media_type=CONTENT_TYPE_LATEST)

    logger.info("Prometheus metrics configured")
