# Schémas Pydantic exposés par l'API d'administration (requêtes et réponses).

from __future__ import annotations

from pydantic import BaseModel, Field


class ActivationRequest(BaseModel):
    """Requête d'activation.

    Champs:
    - code: code d'activation fourni par le control-plane (ACT-XXXX-XXXX-XXXX)
    - actor_id: utilisateur hôte à l'origine de l'action (0 = système)
    """

    code: str = Field(min_length=1, max_length=64)
    actor_id: int = 0


class ActivationResponse(BaseModel):
    """Résultat structuré d'une activation (succès ou échec)."""

    success: bool
    kind: str | None = None
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


class ExpiryRequest(BaseModel):
    """Nouvelle fin de contrat d'un tenant.

    Champs:
    - expiry_date: `YYYY-MM-DD` ou null (illimité)
    - keep_enabled_flag: si vrai, ne touche pas au drapeau `enabled`
    """

    expiry_date: str | None = None
    keep_enabled_flag: bool = False
    actor_id: int = 0


class AccessRequest(BaseModel):
    """Activation/désactivation administrative d'un tenant."""

    enabled: bool
    clear_activation: bool = False
    actor_id: int = 0


class TenantStatusResponse(BaseModel):
    """État d'activation d'un tenant."""

    tenant_id: int
    enabled: bool
    active: bool
    expiry_date: str | None = None
    contract_start: str | None = None
    activation_code: str | None = None


class StatusCheckResponse(BaseModel):
    """Résultat d'une vérification de statut distante."""

    status: str
    performed: bool
    kind: str | None = None
    deactivated: bool = False
    features: dict = Field(default_factory=dict)


class DispatchResponse(BaseModel):
    """Nombre d'événements envoyés par un cycle manuel."""

    dispatched: int
