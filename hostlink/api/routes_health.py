"""
Endpoint de santé pour vérifier la disponibilité de l'API et du connecteur.

Expose `/health`: état du stockage, activation du déploiement et backlog de l'outbox.
"""

from fastapi import APIRouter, Depends

from hostlink.api.deps import get_container
from hostlink.core.container import Container

router = APIRouter(tags=["health"])


@router.get("/health")
def health(c: Container = Depends(get_container)):
    """Vérifie la disponibilité de l'API, du stockage et l'état d'activation."""
    snap = c.gateway.snapshot()
    return {
        "status": "ok",
        "storage": c.storage_backend,
        "activated": snap.activated,
        "registered": snap.registered,
        "webhook_enabled": c.settings.WEBHOOK_ENABLED,
        "outbox": c.outbox.counts_by_status(),
    }
