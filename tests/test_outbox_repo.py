# ============================================================
# Tests : tests/test_outbox_repo.py
# Objet  : Sélection, transitions et rétention de l'outbox (sqlite mémoire).
# ============================================================
"""
Tests pour le repository de l'outbox.

Ce module vérifie les transitions de statut autorisées, la sélection avec
backoff et la rétention via SQLAlchemy avec une base SQLite en mémoire.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from hostlink.domain.delivery import CLEANUP_DAYS, MAX_RETRY_ATTEMPTS, backoff
from hostlink.domain.models import EventStatus
from hostlink.domain.signing import generate_event_id
from hostlink.infra.repo.models import Base
from hostlink.infra.repo.outbox_repo import OutboxRepo

NOW = 1_767_225_600
DAY = 86400


def _session() -> Session:
    """Crée une session SQLAlchemy avec une base SQLite en mémoire."""
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    return Session(bind=engine)


def _insert(repo: OutboxRepo, created_at: int = NOW, epoch: int = 1, tenant_id: int = 0) -> str:
    event_id = generate_event_id()
    repo.insert(
        event_id=event_id,
        event_type="user.created",
        category="user",
        actor_id=0,
        tenant_id=tenant_id,
        payload='{"id":1}',
        epoch=epoch,
        now=created_at,
    )
    return event_id


def _row_id(repo: OutboxRepo, event_id: str) -> int:
    event = repo.get(event_id)
    assert event is not None
    return event.id


def test_insert_is_pending_with_zero_attempts() -> None:
    """Un événement inséré est `pending`, attempts=0, jamais tenté."""
    repo = OutboxRepo(_session())
    event = repo.get(_insert(repo))
    assert event is not None
    assert event.status == EventStatus.PENDING
    assert event.attempts == 0
    assert event.last_attempt_at == 0


def test_select_orders_by_created_at_and_caps_limit() -> None:
    """Sélection du plus ancien au plus récent, au plus `limit`."""
    repo = OutboxRepo(_session())
    late = _insert(repo, created_at=NOW + 10)
    early = _insert(repo, created_at=NOW)
    _insert(repo, created_at=NOW + 20)
    got = repo.select_dispatchable(2, NOW + 30)
    assert [e.event_id for e in got] == [early, late]


def test_failed_event_respects_backoff() -> None:
    """Un échec n'est jamais resélectionné avant `last_attempt_at + backoff`."""
    repo = OutboxRepo(_session())
    rid = _row_id(repo, _insert(repo))
    assert repo.mark_failed([rid], "HTTP 500", NOW) == 1
    event = repo.select_dispatchable(10, NOW + backoff(1))
    assert event == []
    got = repo.select_dispatchable(10, NOW + backoff(1) + 1)
    assert [e.id for e in got] == [rid]
    assert got[0].status == EventStatus.FAILED
    assert got[0].attempts == 1


def test_failed_then_sent() -> None:
    """Transition failed -> sent autorisée."""
    repo = OutboxRepo(_session())
    eid = _insert(repo)
    rid = _row_id(repo, eid)
    repo.mark_failed([rid], "boom", NOW)
    assert repo.mark_sent([rid], "ok", NOW + 500) == 1
    event = repo.get(eid)
    assert event is not None and event.status == EventStatus.SENT
    assert event.last_response == "ok"


def test_sent_is_terminal() -> None:
    """Aucune transition ne modifie un événement envoyé."""
    repo = OutboxRepo(_session())
    eid = _insert(repo)
    rid = _row_id(repo, eid)
    repo.mark_sent([rid], "ok", NOW)
    assert repo.mark_failed([rid], "late", NOW + 1) == 0
    assert repo.mark_sent([rid], "again", NOW + 2) == 0
    event = repo.get(eid)
    assert event is not None
    assert event.status == EventStatus.SENT and event.attempts == 0
    assert repo.select_dispatchable(10, NOW + DAY) == []


def test_exhausted_event_never_selected_and_cleaned() -> None:
    """À MAX_RETRY_ATTEMPTS, l'événement n'est plus envoyé puis est supprimé."""
    repo = OutboxRepo(_session())
    eid = _insert(repo)
    rid = _row_id(repo, eid)
    for _ in range(MAX_RETRY_ATTEMPTS):
        repo.mark_failed([rid], "HTTP 500", NOW)
    event = repo.get(eid)
    assert event is not None and event.attempts == MAX_RETRY_ATTEMPTS
    assert repo.select_dispatchable(10, NOW + 365 * DAY) == []
    report = repo.cleanup(NOW)
    assert report.exhausted_deleted == 1
    assert repo.get(eid) is None


def test_cleanup_keeps_recent_sent_events() -> None:
    """Les envois de moins de 30 jours sont conservés."""
    repo = OutboxRepo(_session())
    old = _insert(repo, created_at=NOW - (CLEANUP_DAYS + 1) * DAY)
    recent = _insert(repo, created_at=NOW - DAY)
    pending = _insert(repo, created_at=NOW - (CLEANUP_DAYS + 5) * DAY)
    repo.mark_sent([_row_id(repo, old), _row_id(repo, recent)], "ok", NOW)
    report = repo.cleanup(NOW)
    assert report.sent_deleted == 1 and report.total == 1
    assert repo.get(old) is None
    assert repo.get(recent) is not None
    assert repo.get(pending) is not None


def test_purge_non_terminal_scoped_to_epoch() -> None:
    """La purge d'époque ne touche ni les envois ni l'époque courante."""
    repo = OutboxRepo(_session())
    stale = _insert(repo, epoch=1)
    sent = _insert(repo, epoch=1)
    current = _insert(repo, epoch=2)
    repo.mark_sent([_row_id(repo, sent)], "ok", NOW)
    assert repo.purge_non_terminal(before_epoch=2) == 1
    assert repo.get(stale) is None
    assert repo.get(sent) is not None
    assert repo.get(current) is not None


def test_counts_by_status() -> None:
    """Compteurs par statut, y compris les statuts vides."""
    repo = OutboxRepo(_session())
    _insert(repo)
    rid = _row_id(repo, _insert(repo))
    repo.mark_failed([rid], "x", NOW)
    assert repo.counts_by_status() == {"pending": 1, "sent": 0, "failed": 1}
