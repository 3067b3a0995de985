"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "arcs_requests_total",
    "Total HTTP requests",
    labelnames=("kind", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "arcs_request_latency_seconds",
    "Latency until response headers are ready",
    labelnames=("kind",),
    registry=REGISTRY,
)

INDEX_BUILDS = Counter(
    "arcs_index_builds_total",
    "Container index builds by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INDEX_DURATION = Histogram(
    "arcs_index_duration_seconds",
    "Time spent parsing and persisting a container directory",
    registry=REGISTRY,
)

CACHE_HITS = Counter(
    "arcs_index_cache_hits_total",
    "Lookups answered by a fresh cached generation",
    registry=REGISTRY,
)

STREAMED_BYTES = Counter(
    "arcs_streamed_bytes_total",
    "Decoded archive bytes written to clients",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "INDEX_BUILDS",
    "INDEX_DURATION",
    "CACHE_HITS",
    "STREAMED_BYTES",
    "metrics_response",
]
