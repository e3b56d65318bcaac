"""Configuration centralisée Celery pour les tâches planifiées du connecteur.

Ce module définit la configuration globale de Celery incluant les politiques d'acquittement,
timeouts et le planning beat (dispatch de l'outbox, expiration des accès, jetons expirés).
"""

# ============================================================
# Module : hostlink/app/celeryconfig.py
# Objet  : Configuration centralisée Celery (acks, timeouts, beat).
# ============================================================

from __future__ import annotations

import os

# Acks
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1
task_time_limit = 300  # secondes
broker_pool_limit = 10
timezone = "UTC"
enable_utc = True

# Les tâches planifiées ne se relancent pas: le cycle suivant reprend
max_retries = 0

_dispatch_interval = float(os.getenv("DISPATCH_INTERVAL_S", "60") or 60)

beat_schedule = {
    "dispatch-events": {
        "task": "hostlink.tasks.dispatch_events",
        "schedule": _dispatch_interval,
        "options": {"expires": _dispatch_interval},
    },
    "expire-access": {
        "task": "hostlink.tasks.expire_access",
        "schedule": 3600.0,
    },
    "cleanup-expired-credentials": {
        "task": "hostlink.tasks.cleanup_expired_credentials",
        "schedule": 86400.0,
    },
}
