# ============================================================
# Module : hostlink/infra/repo/outbox_repo.py
# Objet  : Accès SQL à l'outbox d'événements (insert, sélection, transitions).
# Notes  : `sent` est terminal; aucune requête ne modifie une ligne envoyée.
# ============================================================

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from ...domain.delivery import (
    CLEANUP_DAYS,
    MAX_RETRY_ATTEMPTS,
    backoff,
    truncate_response,
)
from ...domain.models import CleanupReport, EventStatus, OutboxEvent
from .models import OutboxEventORM

_NON_TERMINAL = (EventStatus.PENDING.value, EventStatus.FAILED.value)


def _to_domain(row: OutboxEventORM) -> OutboxEvent:
    return OutboxEvent(
        id=row.id,
        event_id=row.event_id,
        event_type=row.event_type,
        category=row.category,
        actor_id=int(row.actor_id or 0),
        tenant_id=int(row.tenant_id or 0),
        payload=row.payload or "{}",
        status=EventStatus(row.status),
        attempts=int(row.attempts or 0),
        last_attempt_at=int(row.last_attempt_at or 0),
        last_response=row.last_response,
        created_at=int(row.created_at or 0),
    )


def _retry_due(now: int):
    """Clause: échec non épuisé dont le backoff est écoulé.

    Une branche par nombre de tentatives, pour rester portable (pas de POWER()).
    """
    return or_(
        *(
            and_(
                OutboxEventORM.attempts == n,
                OutboxEventORM.last_attempt_at < now - backoff(n),
            )
            for n in range(MAX_RETRY_ATTEMPTS)
        )
    )


class OutboxRepo:
    """Opérations SQL sur `outbox_events` dans la transaction de la session."""

    def __init__(self, session: Session) -> None:
        """Construit le repo avec une session (SQLAlchemy)."""
        self._session = session

    def insert(
        self,
        *,
        event_id: str,
        event_type: str,
        category: str,
        actor_id: int,
        tenant_id: int,
        payload: str,
        epoch: int,
        now: int,
    ) -> None:
        """Insère un événement `pending` (attempts=0)."""
        self._session.add(
            OutboxEventORM(
                event_id=event_id,
                event_type=event_type,
                category=category,
                actor_id=actor_id,
                tenant_id=tenant_id,
                payload=payload,
                status=EventStatus.PENDING.value,
                attempts=0,
                last_attempt_at=0,
                epoch=epoch,
                created_at=now,
            )
        )
        self._session.flush()

    def select_dispatchable(self, limit: int, now: int, lock: bool = True) -> list[OutboxEvent]:
        """Événements à envoyer, du plus ancien au plus récent, au plus `limit`.

        Avec `lock`, les lignes sont verrouillées (FOR UPDATE SKIP LOCKED là où
        le dialecte le permet) jusqu'à la fin de la transaction.
        """
        stmt = (
            select(OutboxEventORM)
            .where(
                or_(
                    OutboxEventORM.status == EventStatus.PENDING.value,
                    and_(
                        OutboxEventORM.status == EventStatus.FAILED.value,
                        OutboxEventORM.attempts < MAX_RETRY_ATTEMPTS,
                        _retry_due(now),
                    ),
                )
            )
            .order_by(OutboxEventORM.created_at.asc(), OutboxEventORM.id.asc())
            .limit(max(0, int(limit)))
        )
        if lock:
            stmt = stmt.with_for_update(skip_locked=True)
        return [_to_domain(r) for r in self._session.execute(stmt).scalars().all()]

    def mark_sent(self, ids: Sequence[int], response: str | bytes | None, now: int) -> int:
        """Passe un lot en `sent`. Retourne le nombre de lignes modifiées."""
        if not ids:
            return 0
        stmt = (
            update(OutboxEventORM)
            .where(OutboxEventORM.id.in_(list(ids)))
            .where(OutboxEventORM.status.in_(_NON_TERMINAL))
            .values(
                status=EventStatus.SENT.value,
                last_attempt_at=now,
                last_response=truncate_response(response),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        self._session.expire_all()
        return int(result.rowcount or 0)

    def mark_failed(self, ids: Sequence[int], response: str | bytes | None, now: int) -> int:
        """Passe un lot en `failed`, incrémente `attempts` et horodate la tentative."""
        if not ids:
            return 0
        stmt = (
            update(OutboxEventORM)
            .where(OutboxEventORM.id.in_(list(ids)))
            .where(OutboxEventORM.status.in_(_NON_TERMINAL))
            .values(
                status=EventStatus.FAILED.value,
                attempts=OutboxEventORM.attempts + 1,
                last_attempt_at=now,
                last_response=truncate_response(response),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        self._session.expire_all()
        return int(result.rowcount or 0)

    def cleanup(self, now: int) -> CleanupReport:
        """Supprime les envois anciens et les échecs épuisés."""
        cutoff = now - CLEANUP_DAYS * 86400
        sent = self._session.execute(
            delete(OutboxEventORM)
            .where(OutboxEventORM.status == EventStatus.SENT.value)
            .where(OutboxEventORM.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        exhausted = self._session.execute(
            delete(OutboxEventORM)
            .where(OutboxEventORM.status == EventStatus.FAILED.value)
            .where(OutboxEventORM.attempts >= MAX_RETRY_ATTEMPTS)
            .execution_options(synchronize_session=False)
        )
        self._session.expire_all()
        return CleanupReport(
            sent_deleted=int(sent.rowcount or 0), exhausted_deleted=int(exhausted.rowcount or 0)
        )

    def purge_non_terminal(self, before_epoch: int | None = None) -> int:
        """Supprime les événements `pending`/`failed` (d'époques antérieures si précisé)."""
        stmt = delete(OutboxEventORM).where(OutboxEventORM.status.in_(_NON_TERMINAL))
        if before_epoch is not None:
            stmt = stmt.where(OutboxEventORM.epoch < before_epoch)
        result = self._session.execute(stmt.execution_options(synchronize_session=False))
        self._session.expire_all()
        return int(result.rowcount or 0)

    def get(self, event_id: str) -> OutboxEvent | None:
        """Retourne un événement par `event_id`."""
        stmt = select(OutboxEventORM).where(OutboxEventORM.event_id == event_id)
        row = self._session.execute(stmt).scalars().first()
        return _to_domain(row) if row else None

    def list_all(self) -> list[OutboxEvent]:
        """Tous les événements, ordre d'insertion."""
        stmt = select(OutboxEventORM).order_by(OutboxEventORM.id.asc())
        return [_to_domain(r) for r in self._session.execute(stmt).scalars().all()]

    def counts_by_status(self) -> dict[str, int]:
        """Nombre d'événements par statut."""
        stmt = select(OutboxEventORM.status, func.count()).group_by(OutboxEventORM.status)
        counts = {s.value: 0 for s in EventStatus}
        for status, n in self._session.execute(stmt).all():
            counts[str(status)] = int(n)
        return counts
