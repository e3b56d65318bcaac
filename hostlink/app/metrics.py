"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus du connecteur (outbox, dispatch,
activation, appels au control-plane) et expose `/metrics` ainsi qu'un
middleware de mesure des requêtes HTTP par route.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Outbox
OUTBOX_EVENTS_LOGGED = Counter(
    "hostlink_outbox_events_logged_total",
    "Events inserted into the outbox",
    ["category"],
)
OUTBOX_LOG_SKIPPED = Counter(
    "hostlink_outbox_log_skipped_total",
    "log_event calls ignored or failed",
    ["reason"],
)
OUTBOX_CLEANUP_DELETED = Counter(
    "hostlink_outbox_cleanup_deleted_total",
    "Outbox rows deleted by retention cleanup",
    ["reason"],
)
OUTBOX_PURGED = Counter(
    "hostlink_outbox_purged_total",
    "Non-terminal events discarded at an activation epoch boundary",
)
OUTBOX_BACKLOG = Gauge(
    "hostlink_outbox_backlog",
    "Outbox rows by status (sampled by /health and dispatch)",
    ["status"],
)

# Dispatch
DISPATCH_BATCHES = Counter(
    "hostlink_dispatch_batches_total",
    "Dispatch batches by outcome",
    ["result"],
)
DISPATCH_EVENTS = Counter(
    "hostlink_dispatch_events_total",
    "Dispatched events by outcome",
    ["result"],
)
DISPATCH_SKIPPED = Counter(
    "hostlink_dispatch_skipped_total",
    "Dispatch runs that did not send anything",
    ["reason"],
)

# Activation / status
ACTIVATION_ATTEMPTS = Counter(
    "hostlink_activation_attempts_total",
    "Activation attempts",
    ["scope", "result"],
)
STATUS_CHECKS = Counter(
    "hostlink_status_checks_total",
    "Remote status checks",
    ["result"],
)
DEACTIVATIONS = Counter(
    "hostlink_deactivations_total",
    "Local deactivations",
    ["reason"],
)

# Appels au control-plane
REMOTE_REQUESTS = Counter(
    "hostlink_remote_requests_total",
    "Requests sent to the control-plane",
    ["endpoint", "status"],
)
REMOTE_LATENCY = Histogram(
    "hostlink_remote_request_duration_seconds",
    "Latency of control-plane requests",
    ["endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 4.0, 8.0],
)

# Jetons
CREDENTIALS_MINTED = Counter(
    "hostlink_credentials_minted_total",
    "Callback credentials minted",
    ["kind"],
)
CREDENTIALS_PURGED = Counter(
    "hostlink_credentials_purged_total",
    "Callback credentials deleted",
    ["reason"],
)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route pour l'exposition
    Prometheus.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Traite une requête HTTP et collecte les métriques.

        Args:
            request: Requête HTTP entrante.
            call_next: Fonction pour appeler le middleware suivant.

        Returns:
            Response: Réponse HTTP avec métriques collectées.
        """
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = request.scope.get("path", "unknown")
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
