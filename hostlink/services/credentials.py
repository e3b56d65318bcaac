# ============================================================
# Module : hostlink/services/credentials.py
# Objet  : Provisioning des identités de service et jetons de callback.
# Contexte : Un seul jeton vivant par paire (identité, tenant). Un jeton émis
#            sous une époque d'activation antérieure est supprimé, jamais réutilisé.
# ============================================================

from __future__ import annotations

import time
from collections.abc import Callable

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from hostlink.app.metrics import CREDENTIALS_MINTED, CREDENTIALS_PURGED
from hostlink.domain.collaborators import HostDirectory
from hostlink.domain.models import HostUser, IdentityKind, ServiceCredential, ServiceIdentity
from hostlink.domain.signing import generate_token
from hostlink.domain.tenancy import NO_TENANT
from hostlink.infra.repo.credential_repo import CredentialRepo
from hostlink.infra.repo.db import session_scope
from hostlink.infra.repo.deployment_repo import DeploymentRepo

# Capacités strictement nécessaires aux callbacks du control-plane
CALLBACK_CAPABILITIES = [
    "users:read",
    "users:write",
    "enrolments:read",
    "enrolments:write",
    "courses:read",
    "reports:read",
    "tokens:issue",
]


def _now() -> int:
    return int(time.time())


def _is_live(credential: ServiceCredential, now: int) -> bool:
    return credential.active and (credential.valid_until == 0 or credential.valid_until >= now)


class CredentialProvisioner:
    """Crée/réutilise l'identité de service et émet des jetons limités à un tenant."""

    def __init__(
        self,
        engine: Engine,
        directory: HostDirectory,
        service_username: str = "hostlink_service",
        clock: Callable[[], int] = _now,
    ) -> None:
        self._engine = engine
        self._directory = directory
        self._service_username = service_username
        self._clock = clock
        self._log = structlog.get_logger(__name__).bind(component="credentials")

    def _ensure_identity(self, repo: CredentialRepo) -> ServiceIdentity:
        identity = repo.find_identity(self._service_username)
        if identity is None:
            identity = repo.create_identity(
                self._service_username, IdentityKind.SERVICE, CALLBACK_CAPABILITIES, self._clock()
            )
            self._log.info("service_identity_created", username=identity.username)
        return identity

    def ensure_service_identity(self) -> ServiceIdentity:
        """Crée l'identité de service une seule fois (capacités de callback uniquement)."""
        with session_scope(self._engine) as session:
            return self._ensure_identity(CredentialRepo(session))

    def _mint_for_pair(
        self,
        session: Session,
        identity: ServiceIdentity,
        tenant_id: int,
        valid_until: int,
        defer_purge: bool = False,
    ) -> tuple[ServiceCredential, bool]:
        """Réutilise le jeton vivant de l'époque courante, sinon émet.

        Les autres jetons de la paire sont supprimés, sauf avec `defer_purge`:
        ils sont alors conservés jusqu'à `promote` (activation réussie).
        """
        repo = CredentialRepo(session)
        now = self._clock()
        epoch = DeploymentRepo(session).snapshot().epoch
        existing = repo.list_for_pair(identity.id, tenant_id)
        current = [c for c in existing if c.epoch == epoch]
        live = [c for c in current if _is_live(c, now)]
        keep = live[0] if live else None
        if not defer_purge:
            stale = [c.id for c in existing if c.epoch != epoch]
            if stale:
                repo.delete_ids(stale)
                CREDENTIALS_PURGED.labels("stale_epoch").inc(len(stale))
                self._log.info(
                    "stale_credentials_purged", identity=identity.username, tenant_id=tenant_id,
                    count=len(stale),
                )
            repo.delete_ids([c.id for c in current if keep is None or c.id != keep.id])
        if keep is not None:
            keep.username = identity.username
            return keep, False
        credential = repo.create(generate_token(), identity.id, tenant_id, valid_until, epoch, now)
        credential.username = identity.username
        CREDENTIALS_MINTED.labels(identity.kind.value).inc()
        return credential, True

    def provision_pair(
        self, tenant_id: int = NO_TENANT, valid_until: int = 0, defer_purge: bool = False
    ) -> tuple[ServiceCredential, bool]:
        """Comme `provision`, en indiquant si le jeton vient d'être émis.

        `defer_purge` laisse intacts les autres jetons de la paire: une
        activation échouée ne doit rien supprimer.
        """
        with session_scope(self._engine) as session:
            repo = CredentialRepo(session)
            identity = self._ensure_identity(repo)
            if self._directory.is_multi_tenant() and tenant_id != NO_TENANT:
                repo.ensure_tenant_link(identity.id, tenant_id)
            credential, created = self._mint_for_pair(
                session, identity, tenant_id, valid_until, defer_purge=defer_purge
            )
        self._log.info("service_credential_provisioned", tenant_id=tenant_id, created=created)
        return credential, created

    def provision(self, tenant_id: int = NO_TENANT, valid_until: int = 0) -> ServiceCredential:
        """Retourne le jeton de callback de l'identité de service pour `tenant_id`."""
        credential, _ = self.provision_pair(tenant_id, valid_until)
        return credential

    def discard(self, credential: ServiceCredential) -> None:
        """Supprime un jeton émis pour une activation qui a échoué."""
        with session_scope(self._engine) as session:
            CredentialRepo(session).delete_ids([credential.id])
        CREDENTIALS_PURGED.labels("activation_failed").inc()

    def promote(self, credential: ServiceCredential, epoch: int, valid_until: int | None) -> None:
        """Rattache le jeton transmis au control-plane à la nouvelle époque.

        Les autres jetons de la même paire sont supprimés.
        """
        with session_scope(self._engine) as session:
            repo = CredentialRepo(session)
            others = [
                c.id
                for c in repo.list_for_pair(credential.identity_id, credential.tenant_id)
                if c.id != credential.id
            ]
            if others:
                repo.delete_ids(others)
                CREDENTIALS_PURGED.labels("replaced").inc(len(others))
            repo.restamp(credential.id, epoch, valid_until)

    def provision_for_user(
        self, user: HostUser, tenant_id: int, valid_until: int = 0
    ) -> tuple[ServiceCredential, bool]:
        """Émet (ou réutilise) le jeton d'un administrateur pour `tenant_id`."""
        with session_scope(self._engine) as session:
            repo = CredentialRepo(session)
            identity = repo.find_user_identity(user.id)
            if identity is None:
                identity = repo.create_identity(
                    f"user-{user.id}",
                    IdentityKind.USER,
                    CALLBACK_CAPABILITIES,
                    self._clock(),
                    host_user_id=user.id,
                )
            if tenant_id != NO_TENANT:
                repo.ensure_tenant_link(identity.id, tenant_id)
            credential, created = self._mint_for_pair(session, identity, tenant_id, valid_until)
        credential.username = user.username
        return credential, created

    def provision_administrators(self, tenant_id: int, valid_until: int = 0) -> tuple[int, int]:
        """Jetons pour tous les administrateurs éligibles; retourne (créés, ignorés)."""
        created = skipped = 0
        for admin in self._directory.list_administrators(tenant_id):
            _, is_new = self.provision_for_user(admin, tenant_id, valid_until)
            if is_new:
                created += 1
            else:
                skipped += 1
        self._log.info(
            "admin_credentials_provisioned", tenant_id=tenant_id, created=created, skipped=skipped
        )
        return created, skipped

    def purge_user_credentials(self, host_user_id: int, tenant_id: int) -> int:
        """Supprime les jetons d'un utilisateur hôte pour `tenant_id` (droits retirés)."""
        with session_scope(self._engine) as session:
            repo = CredentialRepo(session)
            identity = repo.find_user_identity(host_user_id)
            if identity is None:
                return 0
            deleted = repo.delete_ids([c.id for c in repo.list_for_pair(identity.id, tenant_id)])
        if deleted:
            CREDENTIALS_PURGED.labels("user_removed").inc(deleted)
            self._log.info("user_credentials_purged", host_user_id=host_user_id, tenant_id=tenant_id)
        return deleted

    def set_tenant_credentials_active(self, tenant_id: int, active: bool) -> int:
        """Suspend (sans supprimer) ou réactive les jetons d'un tenant."""
        with session_scope(self._engine) as session:
            changed = CredentialRepo(session).set_active_for_tenant(tenant_id, active)
        if changed:
            self._log.info(
                "tenant_credentials_toggled", tenant_id=tenant_id, active=active, count=changed
            )
        return changed

    def set_service_validity(self, tenant_id: int, valid_until: int) -> int:
        """Aligne la validité du jeton de service sur la fin de contrat."""
        with session_scope(self._engine) as session:
            repo = CredentialRepo(session)
            identity = repo.find_identity(self._service_username)
            if identity is None:
                return 0
            return repo.set_validity(identity.id, tenant_id, valid_until)

    def cleanup_expired(self, now: int | None = None) -> list[ServiceCredential]:
        """Supprime les jetons dont la validité est dépassée et les retourne."""
        with session_scope(self._engine) as session:
            repo = CredentialRepo(session)
            expired = repo.list_expired(self._clock() if now is None else now)
            repo.delete_ids([c.id for c in expired])
        if expired:
            CREDENTIALS_PURGED.labels("expired").inc(len(expired))
        return expired
