# ============================================================
# Module : hostlink/services/activation.py
# Objet  : Passerelle d'activation (déploiement, tenants, statut distant).
# Contexte : Les échecs des chemins d'activation sont renvoyés sous forme de
#            ActivationResult, jamais levés. Chaque opération distante signe
#            avec le secret lu au début de l'opération.
# ============================================================
"""Passerelle d'activation.

Machine d'état du déploiement::

    UNREGISTERED --activate_deployment ok--> ACTIVATED
    ACTIVATED --status disabled/expired ou 403 hors signature--> DEACTIVATED
    DEACTIVATED --activate_deployment ok--> ACTIVATED (le secret peut changer)

Machine d'état d'un tenant (orthogonale)::

    INACTIVE --activate_tenant ok--> ACTIVE
    ACTIVE --expiry + grâce < now--> EXPIRED
    EXPIRED --activate_tenant ok--> ACTIVE
    ACTIVE --désactivation administrative--> INACTIVE (jetons suspendus)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date
from typing import Any

import structlog
from sqlalchemy.engine import Engine

from hostlink.app.metrics import ACTIVATION_ATTEMPTS, DEACTIVATIONS, STATUS_CHECKS
from hostlink.core.errors import (
    ConnectionFailed,
    Deactivated,
    ErrorKind,
    InvalidResponse,
    ModeMismatch,
    NotFound,
    RemoteRejected,
    SignatureMismatch,
)
from hostlink.core.settings import (
    ACTIVATE_PATH,
    ACTIVATE_TENANT_PATH,
    STATUS_PATH,
    Settings,
)
from hostlink.domain.collaborators import HostDirectory, UserProvisioner
from hostlink.domain.delivery import STATUS_CHECK_INTERVAL
from hostlink.domain.models import (
    ActivationResult,
    DeploymentSnapshot,
    ServiceCredential,
    StatusResult,
    TenantActivation,
)
from hostlink.domain.remote import ActivationResponse, StatusResponse, SuperAdminSpec, parse_model
from hostlink.domain.signing import canonical_json, mask_code, sign_payload
from hostlink.domain.tenancy import (
    NO_TENANT,
    format_contract_date,
    is_active,
    is_expired,
    parse_contract_date,
)
from hostlink.infra.http_clients import PENDING_INSTANCE_ID, ControlPlaneClient, RemoteReply
from hostlink.infra.repo.db import session_scope
from hostlink.infra.repo.deployment_repo import DeploymentRepo, TenantActivationRepo
from hostlink.services.activation_state import ActivationState
from hostlink.services.credentials import CredentialProvisioner
from hostlink.services.outbox import OutboxStore

DEACTIVATING_STATUSES = ("disabled", "expired")
TENANT_ENABLED_STATUS = "enabled"


def _now() -> int:
    return int(time.time())


class ActivationGateway:
    """Propriétaire des états d'activation du déploiement et des tenants."""

    def __init__(
        self,
        engine: Engine,
        client: ControlPlaneClient,
        directory: HostDirectory,
        credentials: CredentialProvisioner,
        outbox: OutboxStore,
        activation: ActivationState,
        settings: Settings,
        user_provisioner: UserProvisioner | None = None,
        clock: Callable[[], int] = _now,
    ) -> None:
        self._engine = engine
        self._client = client
        self._directory = directory
        self._credentials = credentials
        self._outbox = outbox
        self._activation = activation
        self._settings = settings
        self._user_provisioner = user_provisioner
        self._clock = clock
        self._dispatch: Callable[[], int] | None = None
        self._log = structlog.get_logger(__name__).bind(component="activation")

    def bind_dispatcher(self, dispatch: Callable[[], int]) -> None:
        """Branche le dispatch immédiat invoqué après une activation réussie."""
        self._dispatch = dispatch

    # Helpers ---------------------------------------------------------

    def snapshot(self) -> DeploymentSnapshot:
        """État courant du déploiement."""
        with session_scope(self._engine) as session:
            return DeploymentRepo(session).snapshot()

    def _ensure_secret(self) -> DeploymentSnapshot:
        with session_scope(self._engine) as session:
            repo = DeploymentRepo(session)
            repo.ensure_secret(self._clock())
            return repo.snapshot()

    def _deployment_metadata(self) -> dict[str, Any]:
        s = self._settings
        return {
            "deployment_url": s.DEPLOYMENT_URL,
            "site_name": s.SITE_NAME,
            "plugin_version": s.APP_VERSION,
            "plugin_release": s.APP_RELEASE,
            "admin_email": s.ADMIN_EMAIL,
        }

    def _post_signed(self, path: str, body: dict[str, Any], snap: DeploymentSnapshot) -> RemoteReply:
        payload = canonical_json(body)
        headers = {
            "X-Instance-Id": snap.instance_id or PENDING_INSTANCE_ID,
            "X-Signature": sign_payload(payload, snap.secret or ""),
        }
        return self._client.post(path, payload, headers)

    def _remote_failure(self, reply: RemoteReply, tenant_id: int | None) -> ActivationResult:
        body = reply.error()
        error_cls = RemoteRejected
        if reply.forbidden and body.mentions_signature():
            error_cls = SignatureMismatch
        err = error_cls(
            body.message or body.detail_text() or f"Activation failed (HTTP {reply.status_code})",
            code=body.error or f"http_{reply.status_code}",
        )
        return ActivationResult.from_error(err, tenant_id=tenant_id)

    def _release(self, credential: ServiceCredential, minted: bool) -> None:
        """Annule l'émission d'un jeton si l'activation n'aboutit pas."""
        if minted:
            self._credentials.discard(credential)

    def _register(self, parsed: ActivationResponse, new_epoch: bool) -> int:
        """Enregistre l'identité distante; une nouvelle époque purge l'outbox périmée."""
        with session_scope(self._engine) as session:
            epoch = DeploymentRepo(session).register(
                parsed.instance_id or "", parsed.hmac_secret, self._clock(), new_epoch
            )
        self._activation.invalidate()
        if new_epoch:
            self._outbox.purge_non_terminal(before_epoch=epoch)
        return epoch

    def _provision_superadmins(
        self, specs: list[SuperAdminSpec], tenant_id: int, valid_until: int, actor_id: int
    ) -> int:
        if not specs or self._user_provisioner is None:
            return 0
        created = 0
        for spec in specs:
            user = self._user_provisioner.create_user(spec, tenant_id, valid_until)
            if user is None:
                continue
            created += 1
            self._outbox.log_event(
                "superadmin.provisioned",
                "user",
                {"userid": user.id, "username": user.username, "email": spec.email},
                actor_id=actor_id,
                tenant_id=tenant_id,
            )
        return created

    def _dispatch_now(self) -> int:
        """Dispatch immédiat; un échec est sans conséquence (le cycle planifié reprendra)."""
        if self._dispatch is None:
            return 0
        try:
            return self._dispatch()
        except Exception as exc:
            self._log.warning("post_activation_dispatch_failed", error=type(exc).__name__)
            return 0

    # Déploiement -----------------------------------------------------

    def activate_deployment(self, code: str, actor_id: int = 0) -> ActivationResult:
        """Active un déploiement mono-tenant avec `code`."""
        scope = "deployment"
        if self._directory.is_multi_tenant():
            ACTIVATION_ATTEMPTS.labels(scope, "mode_mismatch").inc()
            err = ModeMismatch("Deployment is multi-tenant: activate tenants individually")
            return ActivationResult.from_error(err)

        snap = self._ensure_secret()
        credential, minted = self._credentials.provision_pair(NO_TENANT, defer_purge=True)
        body = {
            "activation_code": code,
            "hmac_secret": snap.secret,
            **self._deployment_metadata(),
            "admin_token": credential.token,
            "instance_type": "standard",
        }
        self._log.info("activation_requested", scope=scope, code=mask_code(code))
        try:
            reply = self._post_signed(ACTIVATE_PATH, body, snap)
        except ConnectionFailed as exc:
            ACTIVATION_ATTEMPTS.labels(scope, "connection_failed").inc()
            self._release(credential, minted)
            return ActivationResult.from_error(exc)
        if not reply.ok:
            ACTIVATION_ATTEMPTS.labels(scope, "rejected").inc()
            self._release(credential, minted)
            return self._remote_failure(reply, None)
        parsed = parse_model(ActivationResponse, reply.data)
        if not isinstance(parsed, ActivationResponse) or not parsed.instance_id:
            ACTIVATION_ATTEMPTS.labels(scope, "invalid_response").inc()
            self._release(credential, minted)
            return ActivationResult.from_error(
                InvalidResponse("Activation response does not contain an instance id")
            )

        epoch = self._register(parsed, new_epoch=True)
        now = self._clock()
        start = parse_contract_date(parsed.contract_start)
        end = parse_contract_date(parsed.contract_end)
        with session_scope(self._engine) as session:
            DeploymentRepo(session).set_contract(start, end, now)
        valid_until = end or 0
        self._credentials.promote(credential, epoch, valid_until)
        self._credentials.set_tenant_credentials_active(NO_TENANT, True)
        created, skipped = self._credentials.provision_administrators(NO_TENANT, valid_until)
        superadmins = self._provision_superadmins(parsed.superadmins, NO_TENANT, valid_until, actor_id)
        self._outbox.log_event(
            "system.activated",
            "system",
            {
                "instance_id": parsed.instance_id,
                "activation_code": mask_code(code),
                "contract_start": format_contract_date(start),
                "contract_end": format_contract_date(end),
                "plugin_version": self._settings.APP_VERSION,
            },
            actor_id=actor_id,
        )
        ACTIVATION_ATTEMPTS.labels(scope, "success").inc()
        self._log.info("deployment_activated", instance_id=parsed.instance_id, epoch=epoch)
        dispatched = self._dispatch_now()
        return ActivationResult(
            success=True,
            message="Deployment activated",
            instance_id=parsed.instance_id,
            contract_start=start,
            contract_end=end,
            tokens_created=created,
            tokens_skipped=skipped,
            superadmins_created=superadmins,
            dispatched=dispatched,
        )

    # Tenants ---------------------------------------------------------

    def activate_tenant(self, tenant_id: int, code: str, enabled_by: int = 0) -> ActivationResult:
        """Active un tenant (multi-tenant), avec enregistrement du déploiement à la volée."""
        scope = "tenant"
        if not self._directory.is_multi_tenant():
            ACTIVATION_ATTEMPTS.labels(scope, "mode_mismatch").inc()
            err = ModeMismatch("Deployment is single-tenant: use deployment activation")
            return ActivationResult.from_error(err, tenant_id=tenant_id)
        tenant = self._directory.get_tenant(tenant_id)
        if tenant is None:
            ACTIVATION_ATTEMPTS.labels(scope, "not_found").inc()
            err = NotFound(f"Tenant not found: {tenant_id}")
            return ActivationResult.from_error(err, tenant_id=tenant_id)

        snap = self._ensure_secret()
        credential, minted = self._credentials.provision_pair(tenant_id, defer_purge=True)
        body = {
            "activation_code": code,
            "tenant_id": tenant.id,
            "tenant_name": tenant.name,
            "tenant_shortname": tenant.shortname,
            "instance_id": snap.instance_id or None,
            "hmac_secret": snap.secret,
            **self._deployment_metadata(),
            "admin_token": credential.token,
            "instance_type": "multi_tenant",
        }
        self._log.info(
            "activation_requested", scope=scope, tenant_id=tenant_id, code=mask_code(code)
        )
        try:
            reply = self._post_signed(ACTIVATE_TENANT_PATH, body, snap)
        except ConnectionFailed as exc:
            ACTIVATION_ATTEMPTS.labels(scope, "connection_failed").inc()
            self._release(credential, minted)
            return ActivationResult.from_error(exc, tenant_id=tenant_id)
        if not reply.ok:
            ACTIVATION_ATTEMPTS.labels(scope, "rejected").inc()
            self._release(credential, minted)
            return self._remote_failure(reply, tenant_id)
        parsed = parse_model(ActivationResponse, reply.data)
        if not isinstance(parsed, ActivationResponse) or parsed.status != TENANT_ENABLED_STATUS:
            ACTIVATION_ATTEMPTS.labels(scope, "rejected").inc()
            status = parsed.status if isinstance(parsed, ActivationResponse) else None
            error = parsed.error if isinstance(parsed, ActivationResponse) else None
            message = parsed.message if isinstance(parsed, ActivationResponse) else None
            self._release(credential, minted)
            err = RemoteRejected(
                message or f"Tenant activation returned status {status!r}",
                code=error or "activation_failed",
            )
            return ActivationResult.from_error(err, tenant_id=tenant_id)

        epoch = snap.epoch
        if parsed.instance_id:
            new_epoch = parsed.instance_id != snap.instance_id
            epoch = self._register(parsed, new_epoch=new_epoch)
        now = self._clock()
        start = parse_contract_date(parsed.contract_start)
        end = parse_contract_date(parsed.contract_end)
        with session_scope(self._engine) as session:
            TenantActivationRepo(session).upsert(
                tenant_id,
                now,
                enabled=True,
                expiry_date=end,
                contract_start=start,
                activation_code=code,
                plugin_version=self._settings.APP_VERSION,
                enabled_by=enabled_by,
            )
        valid_until = end or 0
        self._credentials.set_tenant_credentials_active(tenant_id, True)
        self._credentials.promote(credential, epoch, valid_until)
        created, skipped = self._credentials.provision_administrators(tenant_id, valid_until)
        superadmins = self._provision_superadmins(parsed.superadmins, tenant_id, valid_until, enabled_by)
        self._outbox.log_event(
            "tenant.activated",
            "tenant",
            {
                "tenant_id": tenant.id,
                "tenant_name": tenant.name,
                "activation_code": mask_code(code),
                "contract_start": format_contract_date(start),
                "contract_end": format_contract_date(end),
            },
            actor_id=enabled_by,
            tenant_id=tenant_id,
        )
        ACTIVATION_ATTEMPTS.labels(scope, "success").inc()
        self._log.info("tenant_activated", tenant_id=tenant_id, epoch=epoch)
        dispatched = self._dispatch_now()
        return ActivationResult(
            success=True,
            message=f"Tenant {tenant.name} activated",
            instance_id=parsed.instance_id or snap.instance_id,
            tenant_id=tenant_id,
            contract_start=start,
            contract_end=end,
            tokens_created=created,
            tokens_skipped=skipped,
            superadmins_created=superadmins,
            dispatched=dispatched,
        )

    def _require_tenant(self, tenant_id: int) -> None:
        if not self._directory.is_multi_tenant():
            raise ModeMismatch("Tenant access applies to multi-tenant deployments only")
        if self._directory.get_tenant(tenant_id) is None:
            raise NotFound(f"Tenant not found: {tenant_id}")

    def tenant_status(self, tenant_id: int) -> TenantActivation | None:
        """Enregistrement d'activation du tenant (None si jamais activé)."""
        with session_scope(self._engine) as session:
            return TenantActivationRepo(session).get(tenant_id)

    def is_tenant_active(self, tenant_id: int, now: int | None = None) -> bool:
        """Actif si activé et `expiry_date + grâce >= now`."""
        record = self.tenant_status(tenant_id)
        if record is None:
            return False
        return is_active(record.enabled, record.expiry_date, self._clock() if now is None else now)

    def _write_tenant(self, tenant_id: int, **fields: Any) -> TenantActivation:
        now = self._clock()
        with session_scope(self._engine) as session:
            repo = TenantActivationRepo(session)
            record = repo.update(tenant_id, now, **fields)
            if record is None:
                record = repo.upsert(
                    tenant_id,
                    now,
                    enabled=fields.get("enabled", False),
                    expiry_date=fields.get("expiry_date"),
                    contract_start=None,
                    activation_code=None,
                    plugin_version=self._settings.APP_VERSION,
                    enabled_by=fields.get("enabled_by", 0),
                )
        return record

    def set_tenant_expiry(
        self, tenant_id: int, expiry: str | date | None, actor_id: int = 0
    ) -> TenantActivation:
        """Met à jour la fin de contrat et en dérive l'état activé/désactivé.

        Date passée (grâce comprise): désactivation et suspension des jetons.
        Date nulle ou future: activation et réactivation des jetons.
        """
        self._require_tenant(tenant_id)
        expiry_ts = parse_contract_date(expiry)
        enabled = not is_expired(expiry_ts, self._clock())
        record = self._write_tenant(
            tenant_id, expiry_date=expiry_ts, enabled=enabled, enabled_by=actor_id
        )
        self._credentials.set_tenant_credentials_active(tenant_id, enabled)
        self._credentials.set_service_validity(tenant_id, expiry_ts or 0)
        self._outbox.log_event(
            "tenant.expiry_updated",
            "tenant",
            {"tenant_id": tenant_id, "expiry_date": format_contract_date(expiry_ts), "enabled": enabled},
            actor_id=actor_id,
            tenant_id=tenant_id,
        )
        return record

    def set_tenant_expiry_date(
        self, tenant_id: int, expiry: str | date | None, actor_id: int = 0
    ) -> TenantActivation:
        """Met à jour la fin de contrat sans toucher au drapeau `enabled`."""
        self._require_tenant(tenant_id)
        expiry_ts = parse_contract_date(expiry)
        record = self._write_tenant(tenant_id, expiry_date=expiry_ts)
        self._credentials.set_service_validity(tenant_id, expiry_ts or 0)
        self._outbox.log_event(
            "tenant.expiry_updated",
            "tenant",
            {"tenant_id": tenant_id, "expiry_date": format_contract_date(expiry_ts)},
            actor_id=actor_id,
            tenant_id=tenant_id,
        )
        return record

    def enable_tenant(self, tenant_id: int, actor_id: int = 0) -> TenantActivation:
        """Réactive administrativement un tenant (jetons réactivés)."""
        self._require_tenant(tenant_id)
        record = self._write_tenant(tenant_id, enabled=True, enabled_by=actor_id)
        self._credentials.set_tenant_credentials_active(tenant_id, True)
        self._outbox.log_event(
            "tenant.access_enabled",
            "tenant",
            {"tenant_id": tenant_id},
            actor_id=actor_id,
            tenant_id=tenant_id,
        )
        return record

    def disable_tenant(
        self, tenant_id: int, actor_id: int = 0, clear_activation: bool = False
    ) -> TenantActivation:
        """Désactive un tenant: jetons suspendus, jamais supprimés.

        `clear_activation` efface aussi code et dates pour permettre une
        nouvelle activation complète.
        """
        self._require_tenant(tenant_id)
        fields: dict[str, Any] = {"enabled": False, "enabled_by": actor_id}
        if clear_activation:
            fields.update(activation_code=None, contract_start=None, expiry_date=None)
        record = self._write_tenant(tenant_id, **fields)
        self._credentials.set_tenant_credentials_active(tenant_id, False)
        self._outbox.log_event(
            "tenant.access_disabled",
            "tenant",
            {"tenant_id": tenant_id, "clear_activation": clear_activation},
            actor_id=actor_id,
            tenant_id=tenant_id,
        )
        return record

    # Statut ----------------------------------------------------------

    def deactivate(self, reason: str) -> bool:
        """Désactive localement le déploiement; retourne True s'il était actif."""
        with session_scope(self._engine) as session:
            previous = DeploymentRepo(session).set_activated(False, self._clock())
        self._activation.invalidate()
        if previous:
            DEACTIVATIONS.labels(reason).inc()
            self._log.warning("deployment_deactivated", reason=reason)
        return previous

    def status_check_due(self, now: int | None = None) -> bool:
        """Vrai si l'intervalle minimal depuis la dernière vérification est écoulé."""
        now = self._clock() if now is None else now
        return now - self.snapshot().last_status_check > STATUS_CHECK_INTERVAL

    def check_status(self, force: bool = False) -> StatusResult:
        """Interroge le control-plane (au plus une fois par intervalle)."""
        now = self._clock()
        with session_scope(self._engine) as session:
            repo = DeploymentRepo(session)
            snap = repo.snapshot()
            if not force and now - snap.last_status_check <= STATUS_CHECK_INTERVAL:
                return StatusResult(status="skipped", performed=False)
            repo.stamp_status_check(now)
        self._activation.invalidate()

        if not snap.registered:
            STATUS_CHECKS.labels("unregistered").inc()
            return StatusResult(status="unknown", performed=True)

        timestamp = str(now)
        headers = {
            "X-Instance-Id": snap.instance_id or "",
            "X-Signature": sign_payload(timestamp, snap.secret or ""),
            "X-Timestamp": timestamp,
        }
        try:
            reply = self._client.get(
                STATUS_PATH, {"deployment_url": self._settings.DEPLOYMENT_URL}, headers
            )
        except ConnectionFailed:
            STATUS_CHECKS.labels("connection_failed").inc()
            return StatusResult(status="unknown", performed=True, kind=ErrorKind.CONNECTION_FAILED)

        if reply.ok:
            parsed = parse_model(StatusResponse, reply.data)
            status = parsed if isinstance(parsed, StatusResponse) else StatusResponse()
            result = StatusResult(
                status=status.status,
                performed=True,
                features=dict(status.features),
                contract_end=status.contract_end or "",
            )
            if status.status in DEACTIVATING_STATUSES:
                err = Deactivated(f"Remote status is {status.status}", code=status.status)
                result.deactivated = self.deactivate(err.code)
                result.kind = err.kind
            else:
                with session_scope(self._engine) as session:
                    repo = DeploymentRepo(session)
                    repo.set_features(status.features)
                    end = parse_contract_date(status.contract_end)
                    if end:
                        repo.set_contract(None, end, now)
            STATUS_CHECKS.labels(status.status).inc()
            return result

        if reply.forbidden:
            if reply.error().mentions_signature():
                STATUS_CHECKS.labels("signature_mismatch").inc()
                self._log.warning("status_signature_mismatch")
                return StatusResult(
                    status="signature_mismatch", performed=True, kind=SignatureMismatch.kind
                )
            STATUS_CHECKS.labels("forbidden").inc()
            err = Deactivated("Control plane rejected the deployment", code="forbidden")
            return StatusResult(
                status="disabled",
                performed=True,
                kind=err.kind,
                deactivated=self.deactivate(err.code),
            )

        STATUS_CHECKS.labels("error").inc()
        return StatusResult(status="unknown", performed=True, kind=ErrorKind.REMOTE_REJECTED)
