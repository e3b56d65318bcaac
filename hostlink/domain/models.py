"""
Objets de domaine du connecteur (POPO).

Ce module définit les enregistrements manipulés par les services (déploiement,
activation tenant, événement d'outbox, identité et jeton de service) ainsi que
les résultats structurés renvoyés par les opérations d'activation.
"""

# ============================================================
# Module : hostlink/domain/models.py
# Objet  : Modèles de domaine (dataclasses) et résultats structurés.
# ============================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from hostlink.core.errors import ErrorKind, HostLinkError


class EventStatus(StrEnum):
    """Statut de livraison d'un événement d'outbox."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class IdentityKind(StrEnum):
    """Nature d'une identité porteuse de jetons."""

    SERVICE = "service"
    USER = "user"


@dataclass(frozen=True)
class DeploymentSnapshot:
    """
    Vue figée de l'état du déploiement.

    Toute opération distante lit un snapshot au départ et signe avec ce secret,
    même si le control-plane le remplace en cours de route.
    """

    instance_id: str | None
    secret: str | None
    activated: bool
    epoch: int = 0
    last_status_check: int = 0
    contract_start: int | None = None
    contract_end: int | None = None
    features: dict[str, Any] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        """Vrai si l'instance possède un identifiant et un secret."""
        return bool(self.instance_id) and bool(self.secret)


@dataclass
class TenantActivation:
    """
    Enregistrement d'activation d'un tenant.

    Attributs
    - tenant_id: identifiant du tenant côté hôte.
    - enabled: interrupteur administratif.
    - expiry_date: epoch (midi UTC) de fin de contrat, None = illimité.
    - activation_code: dernier code utilisé.
    - contract_start: epoch de début de contrat.
    - plugin_version: version du connecteur lors de l'activation.
    - enabled_by: utilisateur ayant effectué l'action (0 = système).
    """

    tenant_id: int
    enabled: bool = False
    expiry_date: int | None = None
    activation_code: str | None = None
    contract_start: int | None = None
    plugin_version: str | None = None
    enabled_by: int = 0
    created_at: int = 0
    modified_at: int = 0


@dataclass
class OutboxEvent:
    """Événement d'outbox tel que stocké localement."""

    id: int
    event_id: str
    event_type: str
    category: str
    actor_id: int
    tenant_id: int
    payload: str
    status: EventStatus
    attempts: int = 0
    last_attempt_at: int = 0
    last_response: str | None = None
    created_at: int = 0


@dataclass
class ServiceCredential:
    """Jeton de callback limité à une paire (identité, tenant)."""

    id: int
    token: str
    identity_id: int
    tenant_id: int
    active: bool
    valid_until: int
    epoch: int
    created_at: int = 0
    username: str = ""


@dataclass
class ServiceIdentity:
    """Identité porteuse de jetons (compte de service ou administrateur)."""

    id: int
    username: str
    kind: IdentityKind
    host_user_id: int = 0
    capabilities: list[str] = field(default_factory=list)


@dataclass
class HostUser:
    """Utilisateur de l'application hôte (vu par l'annuaire)."""

    id: int
    username: str
    fullname: str = ""
    email: str = ""


@dataclass
class TenantInfo:
    """Tenant de l'application hôte."""

    id: int
    name: str
    shortname: str = ""


@dataclass
class ProvisionedUser:
    """Compte créé par le provisionneur d'utilisateurs."""

    id: int
    username: str
    credential: str | None = None


@dataclass
class ActivationResult:
    """
    Résultat structuré d'une activation (déploiement ou tenant).

    Les échecs ne sont jamais levés: `success=False` avec `kind`, le code
    d'erreur distant (`error`) et son message (`message`) transmis tels quels.
    """

    success: bool
    kind: ErrorKind | None = None
    error: str | None = None
    message: str = ""
    instance_id: str | None = None
    tenant_id: int | None = None
    contract_start: int | None = None
    contract_end: int | None = None
    tokens_created: int = 0
    tokens_skipped: int = 0
    superadmins_created: int = 0
    dispatched: int = 0

    @classmethod
    def failure(cls, kind: ErrorKind, error: str, message: str, **kw: Any) -> ActivationResult:
        """Construit un résultat d'échec."""
        return cls(success=False, kind=kind, error=error, message=message, **kw)

    @classmethod
    def from_error(cls, err: HostLinkError, **kw: Any) -> ActivationResult:
        """Convertit une erreur du connecteur en résultat d'échec."""
        return cls.failure(err.kind, err.code, err.message, **kw)

    def to_dict(self) -> dict[str, Any]:
        """Représentation sérialisable (API d'administration)."""
        return {
            "success": self.success,
            "kind": self.kind.value if self.kind else None,
            "error": self.error,
            "message": self.message,
            "instance_id": self.instance_id,
            "tenant_id": self.tenant_id,
            "contract_start": self.contract_start,
            "contract_end": self.contract_end,
            "tokens_created": self.tokens_created,
            "tokens_skipped": self.tokens_skipped,
            "superadmins_created": self.superadmins_created,
            "dispatched": self.dispatched,
        }


@dataclass
class StatusResult:
    """Résultat d'une vérification de statut auprès du control-plane."""

    status: str = "unknown"
    performed: bool = False
    features: dict[str, Any] = field(default_factory=dict)
    contract_end: str = ""
    kind: ErrorKind | None = None
    deactivated: bool = False


@dataclass
class LogOutcome:
    """Issue de l'insertion d'un événement (résultat, jamais d'exception)."""

    event_id: str | None = None
    skipped: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Vrai si l'événement a été inséré."""
        return self.event_id is not None


@dataclass
class CleanupReport:
    """Compteurs de suppression de la rétention d'outbox."""

    sent_deleted: int = 0
    exhausted_deleted: int = 0

    @property
    def total(self) -> int:
        """Nombre total de lignes supprimées."""
        return self.sent_deleted + self.exhausted_deleted
