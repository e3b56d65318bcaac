"""
Module: celery_app.

But: Initialiser l’instance Celery du connecteur et charger la config runtime
(dont le planning beat du dispatch et de la maintenance).

Ajout: branche l’instrumentation Prometheus/OTEL des tâches Celery via bind_celery_signals.
Notes:
- Aucun secret loggé.
- Le binding est idempotent.
"""

import structlog
from celery import Celery

from hostlink.core.container import container

celery_app = Celery(
    "hostlink",
    broker=container.settings.CELERY_BROKER_URL,
    backend=container.settings.CELERY_RESULT_BACKEND,
    include=["hostlink.tasks.dispatch_tasks", "hostlink.tasks.maintenance_tasks"],
)
# Load configuration from module (retries, timeouts, acks, beat)
celery_app.config_from_object("hostlink.app.celeryconfig")
celery_app.conf.task_routes = {"hostlink.tasks.*": {"queue": "default"}}

# Brancher l’instrumentation des tâches (Prom + OTEL)
try:
    from hostlink.infra.monitoring.celery_exporter import bind_celery_signals

    bind_celery_signals(celery_app)
except Exception as exc:  # ne jamais casser le worker pour l’observabilité
    structlog.get_logger(__name__).warning(
        "celery_signals_binding_failed", error=type(exc).__name__
    )

__all__ = ["celery_app"]
