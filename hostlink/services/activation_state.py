# ============================================================
# Module : hostlink/services/activation_state.py
# Objet  : Drapeau d'activation mis en cache par processus (TTL borné).
# ============================================================
"""Drapeau d'activation mis en cache au niveau processus.

La valeur est lue paresseusement depuis la base puis conservée au plus
`ttl_seconds`, ou jusqu'à `invalidate()`. Les opérations locales qui modifient
l'activation invalident le cache; le TTL borne la durée pendant laquelle une
activation ou une désactivation faite par un autre processus (API, worker
Celery) reste invisible. Le dispatcher et les tâches planifiées invalident en
début de cycle.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from sqlalchemy.engine import Engine

from hostlink.infra.repo.db import session_scope
from hostlink.infra.repo.deployment_repo import DeploymentRepo

ACTIVATION_CACHE_TTL = 30


class ActivationState:
    """Cache paresseux, à durée de vie bornée, de `deployment_state.activated`."""

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = ACTIVATION_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: bool | None = None
        self._loaded_at = 0.0

    def is_activated(self) -> bool:
        """Retourne le drapeau, rechargé depuis la base si absent ou périmé."""
        with self._lock:
            now = self._clock()
            if self._cached is None or now - self._loaded_at >= self._ttl:
                with session_scope(self._engine) as session:
                    self._cached = DeploymentRepo(session).snapshot().activated
                self._loaded_at = now
            return self._cached

    def invalidate(self) -> None:
        """Oublie la valeur en cache; la prochaine lecture interroge la base."""
        with self._lock:
            self._cached = None
