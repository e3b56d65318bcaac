"""Interfaces des collaborateurs fournis par l'application hôte.

Le connecteur ne connaît pas le modèle de domaine de l'hôte. Il le consulte au
travers de ces interfaces étroites; des implémentations en mémoire vivent dans
`hostlink.infra.host.memory`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from hostlink.domain.models import HostUser, ProvisionedUser, TenantInfo
from hostlink.domain.remote import SuperAdminSpec


class PayloadPackager(ABC):
    """Construit la charge utile (opaque) d'un événement de domaine."""

    @abstractmethod
    def package(self, kind: str, entity_id: int) -> dict[str, Any]:
        """Retourne une map sérialisable décrivant l'entité `entity_id`."""
        raise NotImplementedError


class TenantResolver(ABC):
    """Associe une entité (utilisateur, cours, calendrier...) à ses tenants."""

    @abstractmethod
    def resolve(self, kind: str, entity_id: int) -> list[int]:
        """Retourne les tenants de l'entité (`[0]` en mode mono-tenant)."""
        raise NotImplementedError


class UserProvisioner(ABC):
    """Crée des comptes hôte pour les super-administrateurs décrits à distance."""

    @abstractmethod
    def create_user(
        self, profile: SuperAdminSpec, tenant_id: int, valid_until: int
    ) -> ProvisionedUser | None:
        """Crée (ou retrouve) le compte et retourne `{id, username, credential}`."""
        raise NotImplementedError


class HostDirectory(ABC):
    """Annuaire de l'hôte: mode de déploiement, tenants et utilisateurs."""

    @abstractmethod
    def is_multi_tenant(self) -> bool:
        """Vrai si l'hôte fonctionne en mode multi-tenant."""
        raise NotImplementedError

    @abstractmethod
    def get_tenant(self, tenant_id: int) -> TenantInfo | None:
        """Retourne le tenant ou None s'il est inconnu."""
        raise NotImplementedError

    @abstractmethod
    def get_user(self, user_id: int) -> HostUser | None:
        """Retourne l'utilisateur ou None s'il est inconnu."""
        raise NotImplementedError

    @abstractmethod
    def find_user_by_email(self, email: str) -> HostUser | None:
        """Retourne l'utilisateur portant cet email, ou None."""
        raise NotImplementedError

    @abstractmethod
    def list_administrators(self, tenant_id: int) -> list[HostUser]:
        """Administrateurs éligibles à un jeton de callback pour ce tenant."""
        raise NotImplementedError
