"""
Prometheus metrics middleware for SupportDesk Chat API.

Exposes /metrics endpoint with request counters, latency histograms,
and hand-off metrics (queue, assignments, transfers, AI calls, feedback).
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "supportdesk_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "supportdesk_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
ACTIVE_REQUESTS = Gauge(
    "supportdesk_http_active_requests",
    "Currently active HTTP requests",
)

# Hand-off metrics
QUEUE_LENGTH = Gauge(
    "supportdesk_queue_length",
    "Sessions waiting for a staff member",
)
ASSIGNMENTS = Counter(
    "supportdesk_assignments_total",
    "Assignment attempts",
    ["outcome"],
)
TRANSFERS = Counter(
    "supportdesk_transfers_total",
    "Transfer attempts",
    ["outcome"],
)
COMPLETIONS = Counter(
    "supportdesk_completions_total",
    "Chats marked resolved",
)
ESCALATIONS = Counter(
    "supportdesk_escalations_total",
    "Sessions escalated to the staff queue",
    ["trigger"],
)
AI_LATENCY = Histogram(
    "supportdesk_ai_response_seconds",
    "AI response generation latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)
AI_FAILURES = Counter(
    "supportdesk_ai_failures_total",
    "AI responses replaced by an apology",
    ["reason"],
)
FEEDBACK = Counter(
    "supportdesk_feedback_total",
    "Customer feedback submissions",
    ["kind", "value"],
)


def record_queue_length(length: int):
    """Record the current queue length."""
    QUEUE_LENGTH.set(length)


def record_assignment(outcome: str):
    """Record an assignment outcome (assigned, no_staff, conflict, ...)."""
    ASSIGNMENTS.labels(outcome=outcome).inc()


def record_transfer(outcome: str):
    TRANSFERS.labels(outcome=outcome).inc()


def record_completion():
    COMPLETIONS.inc()


def record_escalation(trigger: str):
    ESCALATIONS.labels(trigger=trigger).inc()


def record_ai_latency(seconds: float):
    """Record AI generation latency."""
    AI_LATENCY.observe(seconds)


def record_ai_failure(reason: str):
    AI_FAILURES.labels(reason=reason).inc()


def record_feedback(kind: str, value: str):
    """Record a message rating (positive/negative) or a session review score."""
    FEEDBACK.labels(kind=kind, value=value).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        except Exception:
            ACTIVE_REQUESTS.dec()
            raise

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
        ACTIVE_REQUESTS.dec()

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
