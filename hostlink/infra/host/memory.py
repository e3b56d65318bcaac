"""
Collaborateurs hôte en mémoire (utilisés pour dev/tests).

Stockent tenants et utilisateurs dans des dicts locaux, non persistants.
L'application hôte remplace ces implémentations via `container.bind_host`.
"""

from __future__ import annotations

from typing import Any

from hostlink.domain.collaborators import (
    HostDirectory,
    PayloadPackager,
    TenantResolver,
    UserProvisioner,
)
from hostlink.domain.models import HostUser, ProvisionedUser, TenantInfo
from hostlink.domain.remote import SuperAdminSpec
from hostlink.domain.tenancy import NO_TENANT


class InMemoryDirectory(HostDirectory):
    """Annuaire en mémoire: tenants, utilisateurs et administrateurs."""

    def __init__(self, multi_tenant: bool = False):
        """Initialise un annuaire vide."""
        self.multi_tenant = multi_tenant
        self._tenants: dict[int, TenantInfo] = {}
        self._users: dict[int, HostUser] = {}
        self._admins: dict[int, list[int]] = {}

    def add_tenant(self, tenant: TenantInfo) -> TenantInfo:
        """Enregistre un tenant et le renvoie."""
        self._tenants[tenant.id] = tenant
        return tenant

    def add_user(self, user: HostUser, admin_of: list[int] | None = None) -> HostUser:
        """Enregistre un utilisateur, administrateur des tenants `admin_of`."""
        self._users[user.id] = user
        for tenant_id in admin_of or []:
            self._admins.setdefault(tenant_id, []).append(user.id)
        return user

    def is_multi_tenant(self) -> bool:
        return self.multi_tenant

    def get_tenant(self, tenant_id: int) -> TenantInfo | None:
        return self._tenants.get(tenant_id)

    def get_user(self, user_id: int) -> HostUser | None:
        return self._users.get(user_id)

    def find_user_by_email(self, email: str) -> HostUser | None:
        for user in self._users.values():
            if email and user.email.lower() == email.lower():
                return user
        return None

    def list_administrators(self, tenant_id: int) -> list[HostUser]:
        ids = self._admins.get(tenant_id, [])
        return [self._users[i] for i in ids if i in self._users]


class StaticTenantResolver(TenantResolver):
    """Résolveur à table fixe; `[0]` pour toute entité inconnue."""

    def __init__(self, mapping: dict[tuple[str, int], list[int]] | None = None):
        self._mapping = dict(mapping or {})

    def assign(self, kind: str, entity_id: int, tenant_ids: list[int]) -> None:
        """Associe une entité à une liste de tenants."""
        self._mapping[(kind, entity_id)] = list(tenant_ids)

    def resolve(self, kind: str, entity_id: int) -> list[int]:
        return list(self._mapping.get((kind, entity_id), [NO_TENANT]))


class DictPayloadPackager(PayloadPackager):
    """Packager minimal: retourne l'identité de l'entité et ses attributs connus."""

    def __init__(self, records: dict[tuple[str, int], dict[str, Any]] | None = None):
        self._records = dict(records or {})

    def put(self, kind: str, entity_id: int, data: dict[str, Any]) -> None:
        """Déclare les attributs d'une entité."""
        self._records[(kind, entity_id)] = dict(data)

    def package(self, kind: str, entity_id: int) -> dict[str, Any]:
        data = {"id": entity_id, "kind": kind}
        data.update(self._records.get((kind, entity_id), {}))
        return data


class InMemoryUserProvisioner(UserProvisioner):
    """Crée les super-administrateurs dans un `InMemoryDirectory`."""

    def __init__(self, directory: InMemoryDirectory):
        self.directory = directory
        self._next_id = 100000

    def create_user(
        self, profile: SuperAdminSpec, tenant_id: int, valid_until: int
    ) -> ProvisionedUser | None:
        username = profile.username or profile.email.split("@")[0]
        existing = self.directory.find_user_by_email(profile.email)
        if existing is not None:
            return ProvisionedUser(id=existing.id, username=existing.username)
        self._next_id += 1
        fullname = f"{profile.firstname} {profile.lastname}".strip()
        user = HostUser(id=self._next_id, username=username, fullname=fullname, email=profile.email)
        self.directory.add_user(user, admin_of=[tenant_id])
        return ProvisionedUser(id=user.id, username=user.username)
