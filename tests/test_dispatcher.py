# ============================================================
# Tests : tests/test_dispatcher.py
# Objet  : Dispatch signé par lots, gestion 200/403/5xx, backoff, verrou.
# ============================================================
"""
Tests du Dispatcher.

Le control-plane est simulé par `httpx.MockTransport`; chaque test part d'un
déploiement activé dont l'événement `system.activated` a déjà été envoyé.
"""

from __future__ import annotations

import httpx

from hostlink.domain.delivery import MAX_RETRY_ATTEMPTS, backoff
from hostlink.domain.models import EventStatus, HostUser
from hostlink.domain.signing import verify_signature
from hostlink.infra.ops.single_flight import make_lock_key
from tests.fakes import build_container

REMOTE_SECRET = "s" * 64


def _activated():
    c, stub, clock, directory = build_container()
    result = c.gateway.activate_deployment("ACT-1")
    assert result.success and result.dispatched == 1
    stub.calls.clear()
    return c, stub, clock, directory


def _log(c, n: int, **kw) -> list[str]:
    ids = [c.outbox.log_event("user.updated", "user", {"id": i}, **kw) for i in range(n)]
    assert all(ids)
    return ids


def test_three_pending_events_sent_then_nothing() -> None:
    """3 événements en attente: tous envoyés, puis un second appel renvoie 0."""
    c, stub, _, _ = _activated()
    ids = _log(c, 3)
    assert c.dispatcher.dispatch_pending() == 3
    assert all(c.outbox.get(i).status == EventStatus.SENT for i in ids)
    assert c.dispatcher.dispatch_pending() == 0
    assert len(stub.requests_to("events")) == 1


def test_batch_is_flat_array_signed_with_instance_headers() -> None:
    """Le lot est un tableau JSON plat signé avec le secret du déploiement."""
    c, stub, _, directory = _activated()
    directory.add_user(HostUser(id=5, username="jdoe", fullname="Jane Doe"))
    event_id = c.outbox.log_event("user.created", "user", {"id": 9}, actor_id=5, tenant_id=0)
    c.dispatcher.dispatch_pending()
    request = stub.requests_to("events")[0]
    assert request.headers["X-Instance-Id"] == "inst-1"
    assert request.headers["X-Deployment-URL"] == "https://lms.example.org"
    assert request.headers["X-Plugin-Release"] == c.settings.APP_RELEASE
    assert verify_signature(request.content, REMOTE_SECRET, request.headers["X-Signature"])
    batch = stub.event_batches()[0]
    assert isinstance(batch, list) and len(batch) == 1
    item = batch[0]
    assert set(item) == {"event_id", "type", "category", "timestamp", "actor", "tenant_id", "data"}
    assert item["event_id"] == event_id
    assert item["type"] == "user.created"
    assert item["data"] == {"id": 9}
    assert item["actor"] == {"userid": 5, "username": "jdoe", "fullname": "Jane Doe"}


def test_actor_resolution() -> None:
    """Acteur 0: système; acteur inconnu: `unknown`."""
    c, _, _, _ = _activated()
    assert c.dispatcher.resolve_actor(0)["username"] == "system"
    assert c.dispatcher.resolve_actor(42) == {
        "userid": 42,
        "username": "unknown",
        "fullname": "Unknown User",
    }


def test_batch_limit_respected() -> None:
    """Au plus `limit` événements par lot, du plus ancien au plus récent."""
    c, stub, clock, _ = _activated()
    ids = []
    for i in range(5):
        ids.extend(_log(c, 1))
        clock.advance(1)
    assert c.dispatcher.dispatch_pending(limit=2) == 2
    assert [e["event_id"] for e in stub.event_batches()[0]] == ids[:2]


def test_server_error_marks_failed_without_deactivation() -> None:
    """5xx: lot en échec, déploiement toujours actif."""
    c, stub, _, _ = _activated()
    ids = _log(c, 2)
    stub.queue("events", (500, "Internal Server Error"))
    assert c.dispatcher.dispatch_pending() == 0
    for event_id in ids:
        event = c.outbox.get(event_id)
        assert event.status == EventStatus.FAILED
        assert event.attempts == 1
        assert event.last_response == "Internal Server Error"
    assert c.activation_state.is_activated()


def test_signature_403_keeps_activation() -> None:
    """403 mentionnant la signature: échec récupérable, jamais de désactivation."""
    c, stub, _, _ = _activated()
    (event_id,) = _log(c, 1)
    stub.queue("events", (403, {"detail": "Invalid HMAC signature"}))
    assert c.dispatcher.dispatch_pending() == 0
    assert c.outbox.get(event_id).status == EventStatus.FAILED
    assert c.activation_state.is_activated()
    assert c.gateway.snapshot().activated


def test_other_403_deactivates() -> None:
    """403 sans mention de signature: échec et désactivation du déploiement."""
    c, stub, _, _ = _activated()
    (event_id,) = _log(c, 1)
    stub.queue("events", (403, {"error": "instance_disabled", "message": "Instance disabled"}))
    assert c.dispatcher.dispatch_pending() == 0
    assert c.outbox.get(event_id).status == EventStatus.FAILED
    assert c.activation_state.is_activated() is False
    assert c.gateway.snapshot().activated is False
    assert c.outbox.log_event("user.created", "user", {"id": 1}) is None


def test_not_activated_makes_no_network_call() -> None:
    """Déploiement non activé: aucun appel réseau."""
    c, stub, _, _ = build_container()
    assert c.dispatcher.dispatch_pending() == 0
    assert stub.calls == []


def test_connection_failure_marks_failed() -> None:
    """Erreur réseau: lot en échec, retenté après backoff."""
    c, stub, clock, _ = _activated()
    (event_id,) = _log(c, 1)
    stub.queue("events", httpx.ConnectError("connection refused"))
    assert c.dispatcher.dispatch_pending() == 0
    event = c.outbox.get(event_id)
    assert event.status == EventStatus.FAILED and event.attempts == 1
    assert "ConnectError" in event.last_response

    assert c.dispatcher.dispatch_pending() == 0
    assert len(stub.requests_to("events")) == 1
    clock.advance(backoff(1) + 1)
    assert c.dispatcher.dispatch_pending() == 1
    assert c.outbox.get(event_id).status == EventStatus.SENT


def test_ninth_failure_exhausts_and_cleanup_deletes() -> None:
    """attempts=9 puis 500: attempts=10, supprimé par le nettoyage du cycle."""
    c, stub, clock, _ = _activated()
    (event_id,) = _log(c, 1)
    row_id = c.outbox.get(event_id).id
    for _ in range(MAX_RETRY_ATTEMPTS - 1):
        c.outbox.mark_failed([row_id], "HTTP 500")
    assert c.outbox.get(event_id).attempts == MAX_RETRY_ATTEMPTS - 1

    clock.advance(backoff(MAX_RETRY_ATTEMPTS - 1) + 1)
    stub.queue("events", (500, "still down"))
    assert c.dispatcher.dispatch_pending() == 0
    sent_ids = [e["event_id"] for e in stub.event_batches()[0]]
    assert sent_ids == [event_id]
    assert c.outbox.get(event_id) is None


def test_status_check_runs_first_when_due() -> None:
    """Un statut `disabled` interrompt le cycle avant tout envoi."""
    c, stub, clock, _ = _activated()
    _log(c, 1)
    clock.advance(301)
    stub.queue("status", (200, {"status": "disabled"}))
    assert c.dispatcher.dispatch_pending() == 0
    assert stub.requests_to("status")
    assert stub.requests_to("events") == []
    assert c.activation_state.is_activated() is False


def test_single_flight_skips_overlapping_run() -> None:
    """Un cycle déjà en cours: le second ne sélectionne rien."""
    c, stub, _, _ = _activated()
    _log(c, 1)
    key = make_lock_key("dispatch", "deployment")
    token = c.dispatcher._lock.acquire(key)
    assert token is not None
    try:
        assert c.dispatcher.dispatch_pending() == 0
        assert stub.requests_to("events") == []
    finally:
        c.dispatcher._lock.release(key, token)
    assert c.dispatcher.dispatch_pending() == 1
