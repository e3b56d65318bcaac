"""
Tâche Celery de dispatch de l'outbox.

Exécutée par beat chaque minute. Le drapeau d'activation est relu en base à
chaque exécution (le worker ne voit pas les invalidations du processus API).
Ignorée si le déploiement n'est pas activé ou si l'envoi est désactivé par
configuration. Un échec est journalisé et abandonné:
le cycle suivant reprend les événements restants.
"""

from __future__ import annotations

import structlog

from hostlink.app.celery_app import celery_app
from hostlink.core.container import container

log = structlog.get_logger(__name__).bind(component="dispatch_task")


def run_dispatch(c=container) -> str:
    """Corps de la tâche (testable sans broker)."""
    c.activation_state.invalidate()
    if not c.activation_state.is_activated():
        return "not_activated"
    if not c.settings.WEBHOOK_ENABLED:
        return "disabled"
    try:
        sent = c.dispatcher.dispatch_pending(c.settings.DISPATCH_BATCH_SIZE)
    except Exception as exc:
        log.error("dispatch_run_failed", error=type(exc).__name__, exc_info=True)
        return "error"
    log.info("dispatch_run_done", sent=sent)
    return f"sent:{sent}"


@celery_app.task(name="hostlink.tasks.dispatch_events")
def dispatch_events_task() -> str:
    return run_dispatch()
