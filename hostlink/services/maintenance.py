# ============================================================
# Module : hostlink/services/maintenance.py
# Objet  : Maintenance planifiée (expiration des accès, jetons expirés).
# ============================================================

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from sqlalchemy.engine import Engine

from hostlink.domain.collaborators import HostDirectory
from hostlink.domain.tenancy import GRACE_WINDOW_SECONDS, format_contract_date, is_expired
from hostlink.infra.repo.db import session_scope
from hostlink.infra.repo.deployment_repo import TenantActivationRepo
from hostlink.services.activation import ActivationGateway
from hostlink.services.credentials import CredentialProvisioner
from hostlink.services.outbox import OutboxStore


def _now() -> int:
    return int(time.time())


@dataclass
class ExpiryReport:
    """Résultat d'un passage d'expiration."""

    tenants_disabled: int = 0
    deployment_deactivated: bool = False


class MaintenanceService:
    """Tâches de fond: contrats expirés et jetons périmés."""

    def __init__(
        self,
        engine: Engine,
        directory: HostDirectory,
        gateway: ActivationGateway,
        credentials: CredentialProvisioner,
        outbox: OutboxStore,
        dispatch: Callable[[], int] | None = None,
        clock: Callable[[], int] = _now,
    ) -> None:
        self._engine = engine
        self._directory = directory
        self._gateway = gateway
        self._credentials = credentials
        self._outbox = outbox
        self._dispatch = dispatch
        self._clock = clock
        self._log = structlog.get_logger(__name__).bind(component="maintenance")

    def expire_access(self, now: int | None = None) -> ExpiryReport:
        """Désactive les tenants (ou le déploiement) dont le contrat est échu."""
        now = self._clock() if now is None else now
        report = ExpiryReport()
        if not self._directory.is_multi_tenant():
            snap = self._gateway.snapshot()
            if snap.activated and is_expired(snap.contract_end, now):
                report.deployment_deactivated = self._gateway.deactivate("contract_expired")
                self._log.warning(
                    "deployment_contract_expired",
                    contract_end=format_contract_date(snap.contract_end),
                )
            return report

        with session_scope(self._engine) as session:
            repo = TenantActivationRepo(session)
            expired = repo.list_enabled_expired(now - GRACE_WINDOW_SECONDS)
            for record in expired:
                repo.update(record.tenant_id, now, enabled=False, enabled_by=0)
        for record in expired:
            self._credentials.set_tenant_credentials_active(record.tenant_id, False)
            tenant = self._directory.get_tenant(record.tenant_id)
            self._outbox.log_event(
                "tenant.access_expired",
                "tenant",
                {
                    "tenant_id": record.tenant_id,
                    "tenant_name": tenant.name if tenant else f"ID: {record.tenant_id}",
                    "expiry_date": format_contract_date(record.expiry_date),
                },
                tenant_id=record.tenant_id,
            )
            self._log.info("tenant_access_expired", tenant_id=record.tenant_id)
        report.tenants_disabled = len(expired)
        return report

    def cleanup_expired_credentials(self, now: int | None = None) -> int:
        """Supprime les jetons périmés, notifie `token.expired` et dispatche aussitôt."""
        expired = self._credentials.cleanup_expired(now)
        for credential in expired:
            self._outbox.log_event(
                "token.expired",
                "token",
                {
                    "credential_id": credential.id,
                    "username": credential.username,
                    "tenant_id": credential.tenant_id,
                    "valid_until": credential.valid_until,
                },
                tenant_id=credential.tenant_id,
            )
        if expired and self._dispatch is not None:
            try:
                self._dispatch()
            except Exception as exc:
                self._log.warning("post_cleanup_dispatch_failed", error=type(exc).__name__)
        self._log.info("expired_credentials_deleted", count=len(expired))
        return len(expired)
