# ============================================================
# Tests : tests/test_tenant_activation.py
# Objet  : Activation des tenants, enregistrement à la volée, accès/expiration.
# ============================================================

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from hostlink.core.errors import ErrorKind, ModeMismatch, NotFound
from hostlink.domain.models import EventStatus, TenantInfo
from hostlink.domain.tenancy import parse_contract_date
from hostlink.infra.repo.credential_repo import CredentialRepo
from hostlink.infra.repo.db import session_scope
from tests.fakes import build_container

TENANT = 7


def _ts(value: str) -> int:
    return int(datetime.fromisoformat(value).replace(tzinfo=UTC).timestamp())


def _multi():
    c, stub, clock, directory = build_container(multi_tenant=True)
    directory.add_tenant(TenantInfo(id=TENANT, name="Acme", shortname="acme"))
    directory.add_tenant(TenantInfo(id=8, name="Globex", shortname="globex"))
    return c, stub, clock, directory


def _tenant_credentials(c, tenant_id: int) -> list:
    with session_scope(c.engine) as session:
        repo = CredentialRepo(session)
        identity = repo.find_identity(c.settings.SERVICE_USERNAME)
        assert identity is not None
        return repo.list_for_pair(identity.id, tenant_id)


def test_first_tenant_activation_registers_deployment() -> None:
    """Enregistrement du déploiement porté par la première activation tenant."""
    c, stub, _, _ = _multi()
    result = c.gateway.activate_tenant(TENANT, "ACT-1", enabled_by=3)
    assert result.success, result.message
    body = json.loads(stub.requests_to("activate-tenant")[0].content)
    assert body["tenant_id"] == TENANT
    assert body["tenant_name"] == "Acme"
    assert body["tenant_shortname"] == "acme"
    assert body["instance_id"] is None
    assert body["instance_type"] == "multi_tenant"
    assert len(body["hmac_secret"]) == 64
    snap = c.gateway.snapshot()
    assert snap.activated and snap.instance_id == "inst-1"
    record = c.gateway.tenant_status(TENANT)
    assert record.enabled and record.activation_code == "ACT-1" and record.enabled_by == 3
    batch = stub.event_batches()[0]
    assert batch[0]["type"] == "tenant.activated" and batch[0]["tenant_id"] == TENANT


def test_contract_end_scenario() -> None:
    """contract_end=2026-01-10: actif jusqu'à 23:59:59Z, inactif à J+1 12:00:01Z."""
    c, stub, _, _ = _multi()
    stub.queue(
        "activate-tenant",
        (
            200,
            {
                "instance_id": "inst-1",
                "hmac_secret": "s" * 64,
                "status": "enabled",
                "contract_start": "2025-01-10",
                "contract_end": "2026-01-10",
            },
        ),
    )
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    record = c.gateway.tenant_status(TENANT)
    assert record.expiry_date == _ts("2026-01-10T12:00:00")
    assert c.gateway.is_tenant_active(TENANT, now=_ts("2026-01-10T23:59:59"))
    assert not c.gateway.is_tenant_active(TENANT, now=_ts("2026-01-11T12:00:01"))
    creds = _tenant_credentials(c, TENANT)
    assert len(creds) == 1 and creds[0].valid_until == record.expiry_date


def test_second_tenant_keeps_other_tenant_events() -> None:
    """Même instance: aucune purge des événements des autres tenants."""
    c, stub, _, _ = _multi()
    stub.queue("events", (500, "down"))
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    failed = c.outbox.list_all()[0]
    assert failed.status == EventStatus.FAILED and failed.tenant_id == TENANT

    result = c.gateway.activate_tenant(8, "ACT-2")
    assert result.success
    body = json.loads(stub.requests_to("activate-tenant")[1].content)
    assert body["instance_id"] == "inst-1"
    assert stub.requests_to("activate-tenant")[1].headers["X-Instance-Id"] == "inst-1"
    assert c.outbox.get(failed.event_id) is not None
    assert c.gateway.snapshot().epoch == 1


def test_new_instance_id_purges_stale_events() -> None:
    """Nouvel instance_id renvoyé: purge des événements de l'époque précédente."""
    c, stub, _, _ = _multi()
    stub.queue("events", (500, "down"))
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    stale = c.outbox.list_all()[0]
    stub.queue(
        "activate-tenant",
        (200, {"instance_id": "inst-9", "hmac_secret": "z" * 64, "status": "enabled"}),
    )
    assert c.gateway.activate_tenant(8, "ACT-2").success
    assert c.outbox.get(stale.event_id) is None
    assert c.gateway.snapshot().epoch == 2


def test_failed_retry_after_new_instance_keeps_credentials() -> None:
    """Réactivation refusée après changement d'instance: le jeton du tenant survit."""
    c, stub, _, _ = _multi()
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    before = [cred.token for cred in _tenant_credentials(c, TENANT)]
    assert len(before) == 1
    stub.queue(
        "activate-tenant",
        (200, {"instance_id": "inst-2", "hmac_secret": "s" * 64, "status": "enabled"}),
    )
    assert c.gateway.activate_tenant(8, "ACT-2").success
    assert c.gateway.snapshot().epoch == 2

    stub.queue("activate-tenant", (400, {"error": "invalid_code", "message": "Invalid code"}))
    result = c.gateway.activate_tenant(TENANT, "ACT-BAD")
    assert not result.success and result.error == "invalid_code"
    assert [cred.token for cred in _tenant_credentials(c, TENANT)] == before

    stub.queue(
        "activate-tenant",
        (200, {"instance_id": "inst-2", "hmac_secret": "s" * 64, "status": "enabled"}),
    )
    assert c.gateway.activate_tenant(TENANT, "ACT-3").success
    (stored,) = _tenant_credentials(c, TENANT)
    assert stored.epoch == 2 and stored.token not in before


def test_status_not_enabled_is_failure() -> None:
    """Statut distant autre que `enabled`: échec, pas d'enregistrement local."""
    c, stub, _, _ = _multi()
    stub.queue("activate-tenant", (200, {"status": "pending", "message": "Awaiting approval"}))
    result = c.gateway.activate_tenant(TENANT, "ACT-1")
    assert not result.success
    assert result.error == "activation_failed"
    assert result.message == "Awaiting approval"
    assert c.gateway.tenant_status(TENANT) is None
    assert _tenant_credentials(c, TENANT) == []


def test_remote_error_passthrough() -> None:
    """Erreur distante transmise telle quelle."""
    c, stub, _, _ = _multi()
    stub.queue("activate-tenant", (409, {"error": "code_used", "message": "Code already used"}))
    result = c.gateway.activate_tenant(TENANT, "ACT-1")
    assert (result.error, result.message) == ("code_used", "Code already used")
    assert result.tenant_id == TENANT


def test_unknown_tenant_and_mode_mismatch() -> None:
    """Tenant inconnu: NotFound; mode mono-tenant: ModeMismatch."""
    c, stub, _, _ = _multi()
    assert c.gateway.activate_tenant(99, "ACT-1").kind == ErrorKind.NOT_FOUND
    single, single_stub, _, _ = build_container()
    assert single.gateway.activate_tenant(TENANT, "ACT-1").kind == ErrorKind.MODE_MISMATCH
    assert stub.calls == [] and single_stub.calls == []


def test_expired_tenant_reactivates() -> None:
    """EXPIRED -> ACTIVE par une nouvelle activation."""
    c, stub, clock, _ = _multi()
    stub.queue(
        "activate-tenant",
        (200, {"instance_id": "inst-1", "hmac_secret": "s" * 64, "status": "enabled",
               "contract_end": "2026-01-05"}),
    )
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    clock.now = _ts("2026-01-07T00:00:00")
    assert not c.gateway.is_tenant_active(TENANT)
    stub.queue(
        "activate-tenant",
        (200, {"instance_id": "inst-1", "hmac_secret": "s" * 64, "status": "enabled",
               "contract_end": "2027-01-05"}),
    )
    assert c.gateway.activate_tenant(TENANT, "ACT-RENEW").success
    assert c.gateway.is_tenant_active(TENANT)
    assert c.gateway.tenant_status(TENANT).expiry_date == parse_contract_date("2027-01-05")


def test_set_tenant_expiry_derives_enabled_flag() -> None:
    """Date passée: désactivation et jetons suspendus; date future: réactivation."""
    c, _, _, _ = _multi()
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    record = c.gateway.set_tenant_expiry(TENANT, "2025-06-01", actor_id=2)
    assert not record.enabled
    assert all(not cred.active for cred in _tenant_credentials(c, TENANT))
    record = c.gateway.set_tenant_expiry(TENANT, "2026-06-01")
    assert record.enabled
    creds = _tenant_credentials(c, TENANT)
    assert creds and all(cred.active for cred in creds)
    assert creds[0].valid_until == parse_contract_date("2026-06-01")
    record = c.gateway.set_tenant_expiry(TENANT, None)
    assert record.enabled and record.expiry_date is None


def test_set_tenant_expiry_date_keeps_enabled_flag() -> None:
    """La variante ne touche pas à l'interrupteur administratif."""
    c, _, _, _ = _multi()
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    record = c.gateway.set_tenant_expiry_date(TENANT, "2025-06-01")
    assert record.enabled
    assert record.expiry_date == parse_contract_date("2025-06-01")
    assert not c.gateway.is_tenant_active(TENANT)


def test_disable_suspends_without_deleting_credentials() -> None:
    """Désactivation administrative: jetons suspendus, jamais supprimés."""
    c, _, _, _ = _multi()
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    record = c.gateway.disable_tenant(TENANT, actor_id=2)
    assert not record.enabled and record.activation_code == "ACT-1"
    creds = _tenant_credentials(c, TENANT)
    assert len(creds) == 1 and not creds[0].active
    record = c.gateway.enable_tenant(TENANT)
    assert record.enabled
    assert _tenant_credentials(c, TENANT)[0].active


def test_disable_with_clear_activation() -> None:
    """`clear_activation` efface code et dates."""
    c, _, _, _ = _multi()
    assert c.gateway.activate_tenant(TENANT, "ACT-1").success
    record = c.gateway.disable_tenant(TENANT, clear_activation=True)
    assert record.activation_code is None and record.expiry_date is None


def test_admin_operations_raise_on_bad_mode_or_tenant() -> None:
    """Les opérations d'administration lèvent ModeMismatch / NotFound."""
    c, _, _, _ = _multi()
    with pytest.raises(NotFound):
        c.gateway.enable_tenant(99)
    single, _, _, _ = build_container()
    with pytest.raises(ModeMismatch):
        single.gateway.set_tenant_expiry(TENANT, "2026-01-01")
