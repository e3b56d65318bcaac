"""
Application principale FastAPI.

Ce module assemble l'API d'administration du connecteur : middlewares,
routes, métriques et tracing.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI avec son titre/debug
- Ajouter les middlewares (request id, métriques)
- Monter les routers (santé, administration, métriques)
"""

from __future__ import annotations

from fastapi import FastAPI

from hostlink.api.routes_admin import router as admin_router
from hostlink.api.routes_health import router as health_router
from hostlink.app.metrics import PrometheusMiddleware, metrics_router
from hostlink.app.tracing import setup_tracing
from hostlink.core.container import container
from hostlink.core.logging import setup_logging
from hostlink.middlewares.request_id import RequestIDMiddleware


def create_app() -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog) et le tracing
    - Ajoute les middlewares de traçabilité et de mesure
    - Publie les routes de santé, d'administration et `/metrics`
    """
    settings = container.settings
    setup_logging(settings.LOG_LEVEL, json_output=settings.APP_ENV != "dev")
    setup_tracing()
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.include_router(health_router)
    app.include_router(admin_router)
    app.include_router(metrics_router)
    return app


app = create_app()
