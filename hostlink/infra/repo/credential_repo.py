# ============================================================
# Module : hostlink/infra/repo/credential_repo.py
# Objet  : Accès SQL aux identités de service, associations tenant et jetons.
# ============================================================

from __future__ import annotations

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ...domain.models import IdentityKind, ServiceCredential, ServiceIdentity
from .models import IdentityTenantORM, ServiceCredentialORM, ServiceIdentityORM


def _identity(row: ServiceIdentityORM) -> ServiceIdentity:
    return ServiceIdentity(
        id=row.id,
        username=row.username,
        kind=IdentityKind(row.kind),
        host_user_id=int(row.host_user_id or 0),
        capabilities=list(row.capabilities or []),
    )


def _credential(row: ServiceCredentialORM, username: str = "") -> ServiceCredential:
    return ServiceCredential(
        id=row.id,
        token=row.token,
        identity_id=row.identity_id,
        tenant_id=int(row.tenant_id or 0),
        active=bool(row.active),
        valid_until=int(row.valid_until or 0),
        epoch=int(row.epoch or 0),
        created_at=int(row.created_at or 0),
        username=username,
    )


class CredentialRepo:
    """CRUD pour identités et jetons de callback."""

    def __init__(self, session: Session) -> None:
        """Construit le repo avec une session (SQLAlchemy)."""
        self._session = session

    # Identités -------------------------------------------------------

    def find_identity(self, username: str) -> ServiceIdentity | None:
        """Retourne l'identité portant ce nom, ou None."""
        stmt = select(ServiceIdentityORM).where(ServiceIdentityORM.username == username)
        row = self._session.execute(stmt).scalars().first()
        return _identity(row) if row else None

    def find_user_identity(self, host_user_id: int) -> ServiceIdentity | None:
        """Retourne l'identité rattachée à un utilisateur hôte."""
        stmt = (
            select(ServiceIdentityORM)
            .where(ServiceIdentityORM.kind == IdentityKind.USER.value)
            .where(ServiceIdentityORM.host_user_id == host_user_id)
        )
        row = self._session.execute(stmt).scalars().first()
        return _identity(row) if row else None

    def create_identity(
        self,
        username: str,
        kind: IdentityKind,
        capabilities: list[str],
        now: int,
        host_user_id: int = 0,
    ) -> ServiceIdentity:
        """Crée une identité (le nom est unique)."""
        row = ServiceIdentityORM(
            username=username,
            kind=kind.value,
            host_user_id=host_user_id,
            capabilities=list(capabilities),
            created_at=now,
        )
        self._session.add(row)
        self._session.flush()
        return _identity(row)

    def ensure_tenant_link(self, identity_id: int, tenant_id: int) -> bool:
        """Associe l'identité au tenant; retourne True si l'association est nouvelle."""
        stmt = (
            select(IdentityTenantORM)
            .where(IdentityTenantORM.identity_id == identity_id)
            .where(IdentityTenantORM.tenant_id == tenant_id)
        )
        if self._session.execute(stmt).scalars().first() is not None:
            return False
        self._session.add(IdentityTenantORM(identity_id=identity_id, tenant_id=tenant_id))
        self._session.flush()
        return True

    def tenant_links(self, identity_id: int) -> list[int]:
        """Tenants associés à une identité."""
        stmt = select(IdentityTenantORM.tenant_id).where(
            IdentityTenantORM.identity_id == identity_id
        )
        return sorted(int(t) for t in self._session.execute(stmt).scalars().all())

    # Jetons ----------------------------------------------------------

    def list_for_pair(self, identity_id: int, tenant_id: int) -> list[ServiceCredential]:
        """Jetons émis pour une paire (identité, tenant)."""
        stmt = (
            select(ServiceCredentialORM)
            .where(ServiceCredentialORM.identity_id == identity_id)
            .where(ServiceCredentialORM.tenant_id == tenant_id)
            .order_by(ServiceCredentialORM.id.asc())
        )
        return [_credential(r) for r in self._session.execute(stmt).scalars().all()]

    def get_by_token(self, token: str) -> ServiceCredential | None:
        """Retourne le jeton correspondant, ou None."""
        stmt = select(ServiceCredentialORM).where(ServiceCredentialORM.token == token)
        row = self._session.execute(stmt).scalars().first()
        return _credential(row) if row else None

    def create(
        self,
        token: str,
        identity_id: int,
        tenant_id: int,
        valid_until: int,
        epoch: int,
        now: int,
    ) -> ServiceCredential:
        """Insère un jeton actif."""
        row = ServiceCredentialORM(
            token=token,
            identity_id=identity_id,
            tenant_id=tenant_id,
            active=True,
            valid_until=valid_until,
            epoch=epoch,
            created_at=now,
        )
        self._session.add(row)
        self._session.flush()
        return _credential(row)

    def delete_ids(self, ids: list[int]) -> int:
        """Supprime des jetons par identifiant."""
        if not ids:
            return 0
        result = self._session.execute(
            delete(ServiceCredentialORM)
            .where(ServiceCredentialORM.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        self._session.expire_all()
        return int(result.rowcount or 0)

    def restamp(self, credential_id: int, epoch: int, valid_until: int | None) -> None:
        """Rattache un jeton à une nouvelle époque (et met à jour sa validité)."""
        values: dict = {"epoch": epoch, "active": True}
        if valid_until is not None:
            values["valid_until"] = valid_until
        self._session.execute(
            update(ServiceCredentialORM)
            .where(ServiceCredentialORM.id == credential_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._session.expire_all()

    def set_active_for_tenant(self, tenant_id: int, active: bool) -> int:
        """Suspend ou réactive tous les jetons d'un tenant."""
        result = self._session.execute(
            update(ServiceCredentialORM)
            .where(ServiceCredentialORM.tenant_id == tenant_id)
            .where(ServiceCredentialORM.active.is_(not active))
            .values(active=active)
            .execution_options(synchronize_session=False)
        )
        self._session.expire_all()
        return int(result.rowcount or 0)

    def set_validity(self, identity_id: int, tenant_id: int, valid_until: int) -> int:
        """Met à jour la validité des jetons d'une paire."""
        result = self._session.execute(
            update(ServiceCredentialORM)
            .where(ServiceCredentialORM.identity_id == identity_id)
            .where(ServiceCredentialORM.tenant_id == tenant_id)
            .values(valid_until=valid_until)
            .execution_options(synchronize_session=False)
        )
        self._session.expire_all()
        return int(result.rowcount or 0)

    def list_expired(self, now: int) -> list[ServiceCredential]:
        """Jetons dont la validité (non nulle) est dépassée."""
        stmt = (
            select(ServiceCredentialORM, ServiceIdentityORM.username)
            .join(ServiceIdentityORM, ServiceIdentityORM.id == ServiceCredentialORM.identity_id)
            .where(ServiceCredentialORM.valid_until > 0)
            .where(ServiceCredentialORM.valid_until < now)
            .order_by(ServiceCredentialORM.id.asc())
        )
        return [_credential(row, username) for row, username in self._session.execute(stmt).all()]
