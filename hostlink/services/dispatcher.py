# ============================================================
# Module : hostlink/services/dispatcher.py
# Objet  : Envoi signé et par lots des événements de l'outbox.
# Contexte : Livraison at-least-once; le destinataire déduplique via event_id.
#            Un seul cycle à la fois (verrou single-flight + verrous de lignes).
# ============================================================

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

import structlog

from hostlink.app.metrics import DISPATCH_BATCHES, DISPATCH_EVENTS, DISPATCH_SKIPPED
from hostlink.core.errors import ConnectionFailed
from hostlink.core.settings import EVENTS_PATH, Settings
from hostlink.domain.collaborators import HostDirectory
from hostlink.domain.models import DeploymentSnapshot, OutboxEvent
from hostlink.domain.signing import canonical_json, sign_payload
from hostlink.infra.http_clients import ControlPlaneClient
from hostlink.infra.ops.single_flight import SingleFlightLock, make_lock_key
from hostlink.services.activation import ActivationGateway
from hostlink.services.activation_state import ActivationState
from hostlink.services.outbox import OutboxStore

DEFAULT_BATCH_SIZE = 50
SYSTEM_ACTOR = {"userid": 0, "username": "system", "fullname": "System"}


def _now() -> int:
    return int(time.time())


class Dispatcher:
    """Draine l'outbox vers l'endpoint d'ingestion du control-plane."""

    def __init__(
        self,
        outbox: OutboxStore,
        gateway: ActivationGateway,
        activation: ActivationState,
        client: ControlPlaneClient,
        directory: HostDirectory,
        lock: SingleFlightLock,
        settings: Settings,
        clock: Callable[[], int] = _now,
    ) -> None:
        self._outbox = outbox
        self._gateway = gateway
        self._activation = activation
        self._client = client
        self._directory = directory
        self._lock = lock
        self._settings = settings
        self._clock = clock
        self._log = structlog.get_logger(__name__).bind(component="dispatcher")

    def resolve_actor(self, actor_id: int) -> dict[str, Any]:
        """Résumé lisible de l'acteur (0 = système, inconnu = `unknown`)."""
        if actor_id <= 0:
            return dict(SYSTEM_ACTOR)
        user = self._directory.get_user(actor_id)
        if user is None:
            return {"userid": actor_id, "username": "unknown", "fullname": "Unknown User"}
        return {"userid": user.id, "username": user.username, "fullname": user.fullname}

    def build_batch(self, events: list[OutboxEvent]) -> list[dict[str, Any]]:
        """Liste plate d'objets événement (l'endpoint attend un tableau JSON)."""
        batch = []
        for event in events:
            try:
                data = json.loads(event.payload or "{}")
            except ValueError:
                data = {}
            batch.append(
                {
                    "event_id": event.event_id,
                    "type": event.event_type,
                    "category": event.category,
                    "timestamp": event.created_at,
                    "actor": self.resolve_actor(event.actor_id),
                    "tenant_id": event.tenant_id,
                    "data": data,
                }
            )
        return batch

    def _headers(self, snap: DeploymentSnapshot, payload: bytes) -> dict[str, str]:
        headers = {
            "X-Instance-Id": snap.instance_id or "",
            "X-Signature": sign_payload(payload, snap.secret or ""),
            "X-Deployment-URL": self._settings.DEPLOYMENT_URL,
        }
        if self._settings.APP_RELEASE:
            headers["X-Plugin-Release"] = self._settings.APP_RELEASE
        return headers

    def dispatch_pending(self, limit: int = DEFAULT_BATCH_SIZE) -> int:
        """Envoie un lot d'événements; retourne le nombre d'événements envoyés."""
        # Relu à chaque cycle: l'activation a pu changer dans un autre processus
        self._activation.invalidate()
        if self._gateway.status_check_due():
            self._gateway.check_status()
        if not self._activation.is_activated():
            DISPATCH_SKIPPED.labels("not_activated").inc()
            return 0

        with self._lock.hold(make_lock_key("dispatch", "deployment")) as held:
            if not held:
                DISPATCH_SKIPPED.labels("locked").inc()
                self._log.info("dispatch_already_running")
                return 0
            try:
                return self._dispatch_batch(limit)
            finally:
                self._outbox.cleanup()

    def _dispatch_batch(self, limit: int) -> int:
        snap = self._gateway.snapshot()
        if not snap.registered:
            DISPATCH_SKIPPED.labels("unregistered").inc()
            return 0
        with self._outbox.claim(limit) as (repo, events):
            if not events:
                DISPATCH_SKIPPED.labels("empty").inc()
                return 0
            payload = canonical_json(self.build_batch(events))
            ids = [e.id for e in events]
            now = self._clock()
            try:
                reply = self._client.post(EVENTS_PATH, payload, self._headers(snap, payload))
            except ConnectionFailed as exc:
                repo.mark_failed(ids, exc.message, now)
                DISPATCH_BATCHES.labels("connection_failed").inc()
                DISPATCH_EVENTS.labels("failed").inc(len(ids))
                return 0

            if reply.ok:
                sent = repo.mark_sent(ids, reply.text, now)
                DISPATCH_BATCHES.labels("sent").inc()
                DISPATCH_EVENTS.labels("sent").inc(sent)
                self._log.info("events_dispatched", count=sent)
                return sent

            repo.mark_failed(ids, reply.text, now)
            DISPATCH_EVENTS.labels("failed").inc(len(ids))
            deactivate = False
            if reply.forbidden and reply.error().mentions_signature():
                # Secret désynchronisé: récupérable par réactivation
                DISPATCH_BATCHES.labels("signature_mismatch").inc()
                self._log.warning("dispatch_signature_mismatch", count=len(ids))
            elif reply.forbidden:
                DISPATCH_BATCHES.labels("forbidden").inc()
                deactivate = True
            else:
                DISPATCH_BATCHES.labels("error").inc()
                self._log.warning("dispatch_failed", status=reply.status_code, count=len(ids))
        # Hors transaction du lot: les transitions sont déjà validées
        if deactivate:
            self._gateway.deactivate("dispatch_forbidden")
        return 0
