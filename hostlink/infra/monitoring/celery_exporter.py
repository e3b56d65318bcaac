# ============================================================
# Module : hostlink/infra/monitoring/celery_exporter.py
# Objet  : Métriques Prometheus et spans OTEL des tâches Celery.
# ============================================================
"""Instrumentation des tâches Celery.

Compteurs de succès/échec et durées d'exécution par tâche, plus un span
OpenTelemetry par exécution (dispatch, expiration, nettoyage).
"""

from __future__ import annotations

import contextlib
import time
from typing import Any

from celery import signals
from opentelemetry import trace
from prometheus_client import Counter, Histogram

TASK_SUCCESS = Counter("hostlink_task_success_total", "Tasks réussies", ["task"])
TASK_FAILURE = Counter("hostlink_task_failure_total", "Tasks échouées", ["task"])
TASK_RUNTIME_SECONDS = Histogram(
    "hostlink_task_runtime_seconds", "Durée d'exécution des tâches", ["task"]
)

_starts: dict[str, float] = {}
_spans: dict[str, Any] = {}
_bound = {"done": False}


def _start_span(task_name: str, task_id: str) -> None:
    """Démarre un span OpenTelemetry pour une tâche Celery."""
    tracer = trace.get_tracer(__name__)
    span = tracer.start_span(name=f"celery:{task_name}")
    span.set_attribute("celery.task_id", task_id)
    _spans[task_id] = span


def _end_span(task_id: str) -> None:
    """Termine le span OpenTelemetry d'une tâche Celery."""
    span = _spans.pop(task_id, None)
    if span is not None:
        span.end()


def on_task_prerun(task_id: str, task_name: str) -> None:
    """Gère le démarrage d'une tâche Celery."""
    _starts[task_id] = time.time()
    _start_span(task_name, task_id)


def on_task_postrun(task_id: str, task_name: str, state: str) -> None:
    """Gère la fin d'une tâche Celery."""
    start = _starts.pop(task_id, None)
    if start is not None:
        TASK_RUNTIME_SECONDS.labels(task=task_name).observe(max(0.0, time.time() - start))
    if state.upper() == "SUCCESS":
        TASK_SUCCESS.labels(task=task_name).inc()
    _end_span(task_id)


def on_task_failure(task_id: str, task_name: str) -> None:
    """Gère l'échec d'une tâche Celery."""
    TASK_FAILURE.labels(task=task_name).inc()
    _end_span(task_id)


def bind_celery_signals(celery_app) -> None:  # type: ignore[no-untyped-def]
    """Attache les handlers de signaux Celery (une seule fois par processus)."""
    if _bound["done"]:
        return
    _bound["done"] = True

    @signals.task_prerun.connect(weak=False)
    def _pre(sender=None, task_id: str = "", task=None, **kw):  # type: ignore[no-untyped-def]
        name = getattr(sender, "name", None) or getattr(task, "name", None) or "unknown"
        with contextlib.suppress(Exception):
            on_task_prerun(task_id=task_id, task_name=name)

    @signals.task_postrun.connect(weak=False)
    def _post(sender=None, task_id: str = "", state: str = "", **kw):  # type: ignore[no-untyped-def]
        name = getattr(sender, "name", None) or "unknown"
        with contextlib.suppress(Exception):
            on_task_postrun(task_id=task_id, task_name=name, state=state or "")

    @signals.task_failure.connect(weak=False)
    def _fail(sender=None, task_id: str = "", **kw):  # type: ignore[no-untyped-def]
        name = getattr(sender, "name", None) or "unknown"
        with contextlib.suppress(Exception):
            on_task_failure(task_id=task_id, task_name=name)
