# ============================================================
# Tests : tests/test_activation.py
# Objet  : Activation du déploiement (mono-tenant).
# ============================================================
"""
Tests de `ActivationGateway.activate_deployment`.

Vérifie la requête signée, l'enregistrement de l'identité distante, la purge
des événements d'une époque périmée et le passage des erreurs distantes.
"""

from __future__ import annotations

import json

import httpx

from hostlink.core.errors import ErrorKind
from hostlink.domain.models import EventStatus, HostUser
from hostlink.domain.signing import verify_signature
from hostlink.domain.tenancy import parse_contract_date
from hostlink.infra.repo.credential_repo import CredentialRepo
from hostlink.infra.repo.db import session_scope
from tests.fakes import build_container


def _service_credentials(c) -> list:
    with session_scope(c.engine) as session:
        repo = CredentialRepo(session)
        identity = repo.find_identity(c.settings.SERVICE_USERNAME)
        if identity is None:
            return []
        return repo.list_for_pair(identity.id, 0)


def test_activation_request_is_signed_with_local_secret() -> None:
    """La requête porte code, secret, métadonnées et jeton, signée avec le secret local."""
    c, stub, _, _ = build_container()
    result = c.gateway.activate_deployment("ACT-1234-5678")
    assert result.success, result.message
    request = stub.requests_to("activate")[0]
    body = json.loads(request.content)
    assert body["activation_code"] == "ACT-1234-5678"
    assert body["deployment_url"] == "https://lms.example.org"
    assert body["site_name"] == "Example LMS"
    assert body["instance_type"] == "standard"
    assert len(body["admin_token"]) == 64
    assert request.headers["X-Instance-Id"] == "pending"
    assert verify_signature(request.content, body["hmac_secret"], request.headers["X-Signature"])


def test_activation_success_registers_and_dispatches() -> None:
    """Succès: identité stockée, secret distant prioritaire, dispatch immédiat."""
    c, stub, _, _ = build_container()
    stub.queue(
        "activate",
        (
            200,
            {
                "instance_id": "inst-42",
                "hmac_secret": "r" * 64,
                "contract_start": "2025-01-01",
                "contract_end": "2026-12-31",
            },
        ),
    )
    result = c.gateway.activate_deployment("ACT-1")
    assert result.success
    assert result.instance_id == "inst-42"
    assert result.contract_end == parse_contract_date("2026-12-31")
    snap = c.gateway.snapshot()
    assert snap.activated and snap.instance_id == "inst-42" and snap.secret == "r" * 64
    assert snap.epoch == 1
    assert c.activation_state.is_activated()
    assert result.dispatched == 1
    (batch,) = stub.event_batches()
    assert batch[0]["type"] == "system.activated"
    assert batch[0]["data"]["activation_code"] == "ACT-1****"
    creds = _service_credentials(c)
    assert len(creds) == 1
    assert creds[0].epoch == 1 and creds[0].valid_until == result.contract_end


def test_failure_passes_remote_error_through() -> None:
    """Non-200: code et message distants transmis tels quels, aucun état modifié."""
    c, stub, _, _ = build_container()
    stub.queue("activate", (400, {"error": "invalid_code", "message": "Code ACT-1 is unknown"}))
    result = c.gateway.activate_deployment("ACT-1")
    assert not result.success
    assert result.kind == ErrorKind.REMOTE_REJECTED
    assert result.error == "invalid_code"
    assert result.message == "Code ACT-1 is unknown"
    snap = c.gateway.snapshot()
    assert not snap.activated and snap.instance_id is None
    assert _service_credentials(c) == []
    assert stub.requests_to("events") == []


def test_failure_with_detail_only() -> None:
    """Corps `detail` seul: code HTTP en repli, détail comme message."""
    c, stub, _, _ = build_container()
    stub.queue("activate", (403, {"detail": "Invalid signature"}))
    result = c.gateway.activate_deployment("ACT-1")
    assert result.kind == ErrorKind.SIGNATURE_MISMATCH
    assert result.error == "http_403"
    assert result.message == "Invalid signature"


def test_missing_instance_id_is_invalid_response() -> None:
    """HTTP 200 sans instance_id: échec structuré."""
    c, stub, _, _ = build_container()
    stub.queue("activate", (200, {"status": "ok"}))
    result = c.gateway.activate_deployment("ACT-1")
    assert not result.success
    assert result.kind == ErrorKind.INVALID_RESPONSE
    assert not c.gateway.snapshot().activated


def test_connection_failure() -> None:
    """Control-plane injoignable: échec structuré, jamais d'exception."""
    c, stub, _, _ = build_container()
    stub.queue("activate", httpx.ConnectTimeout("timed out"))
    result = c.gateway.activate_deployment("ACT-1")
    assert not result.success
    assert result.kind == ErrorKind.CONNECTION_FAILED


def test_multi_tenant_deployment_is_mode_mismatch() -> None:
    """Mode multi-tenant: activation du déploiement refusée sans appel réseau."""
    c, stub, _, _ = build_container(multi_tenant=True)
    result = c.gateway.activate_deployment("ACT-1")
    assert not result.success and result.kind == ErrorKind.MODE_MISMATCH
    assert stub.calls == []


def test_reactivation_purges_stale_events() -> None:
    """Réactivation: aucun événement pending/failed de l'époque précédente ne subsiste."""
    c, stub, _, _ = build_container()
    stub.queue("events", (500, "down"))
    assert c.gateway.activate_deployment("ACT-1").success
    pending = c.outbox.log_event("user.created", "user", {"id": 1})
    assert c.gateway.deactivate("forbidden")
    stub.queue("activate", (200, {"instance_id": "inst-2", "hmac_secret": "n" * 64}))
    result = c.gateway.activate_deployment("ACT-2")
    assert result.success
    assert c.outbox.get(pending) is None
    remaining = c.outbox.list_all()
    assert [e.event_type for e in remaining] == ["system.activated"]
    assert remaining[0].status == EventStatus.SENT
    assert c.gateway.snapshot().epoch == 2
    request = stub.requests_to("events")[-1]
    assert request.headers["X-Instance-Id"] == "inst-2"
    assert verify_signature(request.content, "n" * 64, request.headers["X-Signature"])


def test_reactivation_keeps_single_service_credential() -> None:
    """Un seul jeton de service vivant après réactivation, rattaché à la nouvelle époque."""
    c, _, _, _ = build_container()
    assert c.gateway.activate_deployment("ACT-1").success
    assert c.gateway.activate_deployment("ACT-1").success
    creds = _service_credentials(c)
    assert len(creds) == 1 and creds[0].epoch == 2


def test_administrators_and_superadmins_provisioned() -> None:
    """Jetons pour les administrateurs existants et création des super-admins."""
    c, stub, _, directory = build_container()
    directory.add_user(HostUser(id=2, username="admin", email="admin@example.org"), admin_of=[0])
    stub.queue(
        "activate",
        (
            200,
            {
                "instance_id": "inst-1",
                "hmac_secret": "s" * 64,
                "superadmins": [
                    {"email": "ops@vendor.test", "firstname": "Ops", "lastname": "Team"},
                    {"email": "admin@example.org"},
                ],
            },
        ),
    )
    result = c.gateway.activate_deployment("ACT-1")
    assert result.success
    assert result.tokens_created == 1 and result.tokens_skipped == 0
    assert result.superadmins_created == 2
    created = directory.find_user_by_email("ops@vendor.test")
    assert created is not None and created.fullname == "Ops Team"
    types = [e["type"] for e in stub.event_batches()[0]]
    assert types.count("superadmin.provisioned") == 2

    # Nouvelle époque: les jetons administrateurs sont réémis, jamais réutilisés
    again = c.gateway.activate_deployment("ACT-1")
    assert again.tokens_created == 2 and again.tokens_skipped == 0
