"""Tests de la capture des événements hôte (fan-out par tenant)."""

from __future__ import annotations

import json

from hostlink.domain.collaborators import PayloadPackager
from hostlink.services.event_capture import EventCapture
from tests.fakes import build_container


class _FailingPackager(PayloadPackager):
    def package(self, kind, entity_id):
        raise RuntimeError("entity deleted")


def _activated():
    c, stub, clock, directory = build_container()
    assert c.gateway.activate_deployment("ACT-1").success
    return c


def test_one_event_per_distinct_tenant() -> None:
    """Un événement par tenant résolu, payload empaqueté une fois."""
    c = _activated()
    c.resolver.assign("user", 12, [3, 4, 3])
    c.packager.put("user", 12, {"username": "jdoe"})
    ids = c.capture.capture("user.created", "user", "user", 12, actor_id=2)
    assert len(ids) == 2
    events = [c.outbox.get(i) for i in ids]
    assert sorted(e.tenant_id for e in events) == [3, 4]
    assert json.loads(events[0].payload) == {"id": 12, "kind": "user", "username": "jdoe"}
    assert all(e.actor_id == 2 for e in events)


def test_untenanted_entity_uses_tenant_zero() -> None:
    """Entité inconnue du résolveur: tenant 0."""
    c = _activated()
    (event_id,) = c.capture.capture("course.deleted", "course", "course", 5, extra={"reason": "x"})
    event = c.outbox.get(event_id)
    assert event.tenant_id == 0
    assert json.loads(event.payload)["reason"] == "x"


def test_capture_before_activation_is_noop() -> None:
    """Avant activation: rien n'est capturé."""
    c, _, _, _ = build_container()
    assert c.capture.capture("user.created", "user", "user", 1) == []
    assert c.outbox.list_all() == []


def test_collaborator_failure_never_reaches_producer() -> None:
    """Un packager en échec n'interrompt pas l'opération hôte."""
    c = _activated()
    capture = EventCapture(c.outbox, c.resolver, _FailingPackager())
    assert capture.capture("user.created", "user", "user", 1) == []
