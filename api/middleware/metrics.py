"""
Prometheus metrics middleware for the Carrera Cars lead bot API.

Exposes /metrics endpoint with request counters, latency histograms,
and business metrics for webhooks, funnel transitions and generation.
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST,
)
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "leadbot_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "leadbot_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
ACTIVE_REQUESTS = Gauge(
    "leadbot_http_active_requests",
    "Currently active HTTP requests",
)

# Business metrics
WEBHOOK_ITEMS = Counter(
    "leadbot_webhook_items_total",
    "Webhook sub-items processed",
    ["channel", "outcome"],  # outcome: succeeded, failed, skipped
)
STATUS_TRANSITIONS = Counter(
    "leadbot_funnel_transitions_total",
    "Lead status transitions",
    ["from_status", "to_status"],
)
ESCALATIONS = Counter(
    "leadbot_escalations_total",
    "Leads escalated to a manager",
)
ESCALATION_NOTIFICATIONS = Counter(
    "leadbot_escalation_notifications_total",
    "Manager notification deliveries",
    ["outcome"],
)
GENERATION_FAILURES = Counter(
    "leadbot_generation_failures_total",
    "Turns answered with the fallback message",
)
RETRIEVAL_LATENCY = Histogram(
    "leadbot_retrieval_duration_seconds",
    "Vector retrieval latency",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)
LLM_LATENCY = Histogram(
    "leadbot_llm_duration_seconds",
    "LLM generation latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)


def record_webhook_item(channel: str, outcome: str):
    WEBHOOK_ITEMS.labels(channel=channel, outcome=outcome).inc()


def record_transition(from_status: str, to_status: str):
    STATUS_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()


def record_escalation():
    ESCALATIONS.inc()


def record_escalation_notification(success: bool):
    ESCALATION_NOTIFICATIONS.labels(outcome="sent" if success else "failed").inc()


def record_generation_failure():
    GENERATION_FAILURES.inc()


def record_retrieval_latency(seconds: float):
    RETRIEVAL_LATENCY.observe(seconds)


def record_llm_latency(seconds: float):
    LLM_LATENCY.observe(seconds)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        finally:
            ACTIVE_REQUESTS.dec()

        duration = time.time() - start
        endpoint = request.url.path

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
