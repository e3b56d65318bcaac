# ============================================================
# Module : hostlink/services/outbox.py
# Objet  : Outbox durable des événements de domaine.
# Contexte : Écrite par de nombreux producteurs via log_event (fire-and-forget),
#            lue et mise à jour uniquement par le Dispatcher.
# ============================================================

from __future__ import annotations

import json
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from hostlink.app.metrics import (
    OUTBOX_BACKLOG,
    OUTBOX_CLEANUP_DELETED,
    OUTBOX_EVENTS_LOGGED,
    OUTBOX_LOG_SKIPPED,
    OUTBOX_PURGED,
)
from hostlink.domain.models import CleanupReport, LogOutcome, OutboxEvent
from hostlink.domain.signing import generate_event_id
from hostlink.infra.repo.db import session_scope
from hostlink.infra.repo.deployment_repo import DeploymentRepo
from hostlink.infra.repo.outbox_repo import OutboxRepo
from hostlink.services.activation_state import ActivationState


def _now() -> int:
    return int(time.time())


class OutboxStore:
    """Façade transactionnelle au-dessus de `OutboxRepo`."""

    def __init__(
        self,
        engine: Engine,
        activation: ActivationState,
        clock: Callable[[], int] = _now,
    ) -> None:
        self._engine = engine
        self._activation = activation
        self._clock = clock
        self._log = structlog.get_logger(__name__).bind(component="outbox")

    # Producteurs -----------------------------------------------------

    def record(
        self,
        event_type: str,
        category: str,
        payload: dict[str, Any] | None,
        actor_id: int = 0,
        tenant_id: int = 0,
    ) -> LogOutcome:
        """Insère un événement `pending` et décrit l'issue sans jamais lever.

        Aucun événement n'est conservé tant que le déploiement n'est pas activé.
        """
        try:
            if not self._activation.is_activated():
                return LogOutcome(skipped=True)
            body = json.dumps(payload or {}, separators=(",", ":"), ensure_ascii=False)
            event_id = generate_event_id()
            with session_scope(self._engine) as session:
                epoch = DeploymentRepo(session).snapshot().epoch
                OutboxRepo(session).insert(
                    event_id=event_id,
                    event_type=event_type,
                    category=category,
                    actor_id=int(actor_id or 0),
                    tenant_id=int(tenant_id or 0),
                    payload=body,
                    epoch=epoch,
                    now=self._clock(),
                )
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            return LogOutcome(error=f"{type(exc).__name__}: {exc}")
        return LogOutcome(event_id=event_id)

    def log_event(
        self,
        event_type: str,
        category: str,
        payload: dict[str, Any] | None,
        actor_id: int = 0,
        tenant_id: int = 0,
    ) -> str | None:
        """Journalise un événement de domaine (fire-and-forget).

        Retourne l'`event_id` inséré, ou None si l'appel a été ignoré ou a
        échoué. Les échecs sont journalisés puis abandonnés.
        """
        outcome = self.record(event_type, category, payload, actor_id, tenant_id)
        if outcome.ok:
            OUTBOX_EVENTS_LOGGED.labels(category).inc()
        elif outcome.skipped:
            OUTBOX_LOG_SKIPPED.labels("not_activated").inc()
        else:
            OUTBOX_LOG_SKIPPED.labels("error").inc()
            self._log.warning(
                "outbox_log_failed", event_type=event_type, tenant_id=tenant_id, error=outcome.error
            )
        return outcome.event_id

    # Dispatcher ------------------------------------------------------

    @contextmanager
    def claim(self, limit: int, now: int | None = None) -> Iterator[tuple[OutboxRepo, list[OutboxEvent]]]:
        """Ouvre une transaction et sélectionne (verrouille) un lot à envoyer.

        Les transitions appliquées via le repo fourni sont validées ensemble à
        la sortie du bloc; les lignes restent verrouillées jusque-là.
        """
        with session_scope(self._engine) as session:
            repo = OutboxRepo(session)
            events = repo.select_dispatchable(limit, self._clock() if now is None else now)
            yield repo, events

    def select_dispatchable(self, limit: int, now: int | None = None) -> list[OutboxEvent]:
        """Événements éligibles (pending, ou failed non épuisés et backoff écoulé)."""
        with session_scope(self._engine) as session:
            return OutboxRepo(session).select_dispatchable(
                limit, self._clock() if now is None else now, lock=False
            )

    def mark_sent(self, ids: Sequence[int], response: str | bytes | None) -> int:
        """Marque un lot comme envoyé (atomique)."""
        with session_scope(self._engine) as session:
            return OutboxRepo(session).mark_sent(ids, response, self._clock())

    def mark_failed(self, ids: Sequence[int], response: str | bytes | None) -> int:
        """Marque un lot en échec (atomique), attempts+1."""
        with session_scope(self._engine) as session:
            return OutboxRepo(session).mark_failed(ids, response, self._clock())

    def cleanup(self, now: int | None = None) -> CleanupReport:
        """Rétention: supprime les envois > 30 jours et les échecs épuisés."""
        with session_scope(self._engine) as session:
            report = OutboxRepo(session).cleanup(self._clock() if now is None else now)
        if report.sent_deleted:
            OUTBOX_CLEANUP_DELETED.labels("sent_expired").inc(report.sent_deleted)
        if report.exhausted_deleted:
            OUTBOX_CLEANUP_DELETED.labels("retries_exhausted").inc(report.exhausted_deleted)
            self._log.info("outbox_exhausted_events_deleted", count=report.exhausted_deleted)
        return report

    def purge_non_terminal(self, before_epoch: int | None = None) -> int:
        """Supprime les événements non terminaux (frontière d'époque d'activation)."""
        with session_scope(self._engine) as session:
            purged = OutboxRepo(session).purge_non_terminal(before_epoch)
        if purged:
            OUTBOX_PURGED.inc(purged)
            self._log.info("outbox_stale_events_purged", count=purged, before_epoch=before_epoch)
        return purged

    def get(self, event_id: str) -> OutboxEvent | None:
        """Retourne un événement par identifiant."""
        with session_scope(self._engine) as session:
            return OutboxRepo(session).get(event_id)

    def list_all(self) -> list[OutboxEvent]:
        """Liste tous les événements stockés."""
        with session_scope(self._engine) as session:
            return OutboxRepo(session).list_all()

    def counts_by_status(self) -> dict[str, int]:
        """Compteurs par statut (met à jour la jauge de backlog)."""
        with session_scope(self._engine) as session:
            counts = OutboxRepo(session).counts_by_status()
        for status, n in counts.items():
            OUTBOX_BACKLOG.labels(status).set(n)
        return counts
