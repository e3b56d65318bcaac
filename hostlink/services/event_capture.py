"""Capture des événements de domaine de l'hôte.

Un événement hôte (utilisateur créé, inscription modifiée...) est résolu en
liste de tenants, empaqueté une seule fois, puis journalisé dans l'outbox
une fois par tenant. La capture ne lève jamais vers le producteur.
"""

from __future__ import annotations

import structlog

from hostlink.domain.collaborators import PayloadPackager, TenantResolver
from hostlink.services.outbox import OutboxStore


class EventCapture:
    """Fan-out d'un événement de domaine vers l'outbox."""

    def __init__(
        self, outbox: OutboxStore, resolver: TenantResolver, packager: PayloadPackager
    ) -> None:
        self._outbox = outbox
        self._resolver = resolver
        self._packager = packager
        self._log = structlog.get_logger(__name__).bind(component="event_capture")

    def capture(
        self,
        event_type: str,
        category: str,
        kind: str,
        entity_id: int,
        actor_id: int = 0,
        extra: dict | None = None,
    ) -> list[str]:
        """Journalise `event_type` pour chaque tenant de l'entité; retourne les event_id."""
        try:
            tenants = self._resolver.resolve(kind, entity_id)
            data = self._packager.package(kind, entity_id)
        except Exception as exc:
            # Collaborateurs fournis par l'hôte: un échec ne doit pas remonter au producteur
            self._log.warning(
                "event_capture_failed", event_type=event_type, kind=kind, error=type(exc).__name__
            )
            return []
        if extra:
            data = {**data, **extra}
        ids = []
        for tenant_id in dict.fromkeys(tenants):
            event_id = self._outbox.log_event(event_type, category, data, actor_id, tenant_id)
            if event_id:
                ids.append(event_id)
        return ids
