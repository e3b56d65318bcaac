# ============================================================
# Module : hostlink/tasks/maintenance_tasks.py
# Objet  : Tâches Celery de maintenance (expiration d'accès, jetons expirés).
# ============================================================

from __future__ import annotations

import structlog

from hostlink.app.celery_app import celery_app
from hostlink.core.container import container

log = structlog.get_logger(__name__).bind(component="maintenance_task")


@celery_app.task(name="hostlink.tasks.expire_access")
def expire_access_task() -> dict:
    """Désactive les tenants (ou le déploiement) dont le contrat est échu."""
    container.activation_state.invalidate()
    report = container.maintenance.expire_access()
    log.info(
        "expire_access_done",
        tenants_disabled=report.tenants_disabled,
        deployment_deactivated=report.deployment_deactivated,
    )
    return {
        "tenants_disabled": report.tenants_disabled,
        "deployment_deactivated": report.deployment_deactivated,
    }


@celery_app.task(name="hostlink.tasks.cleanup_expired_credentials")
def cleanup_expired_credentials_task() -> int | str:
    """Supprime les jetons périmés (si activé par configuration)."""
    container.activation_state.invalidate()
    if not container.settings.CLEANUP_EXPIRED_CREDENTIALS:
        return "disabled"
    return container.maintenance.cleanup_expired_credentials()
