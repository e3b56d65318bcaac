"""Schémas des réponses du control-plane (Pydantic).

Les champs optionnels ont des valeurs par défaut: un champ absent d'une
version plus ancienne du control-plane se lit comme "non fourni" au lieu
d'être détecté à l'exécution. Les champs inconnus sont ignorés.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class RemoteModel(BaseModel):
    """Base tolérante: champs supplémentaires ignorés, valeurs nulles acceptées."""

    model_config = ConfigDict(extra="ignore")


class SuperAdminSpec(RemoteModel):
    """Description d'un super-administrateur à provisionner côté hôte."""

    email: str
    firstname: str = ""
    lastname: str = ""
    username: str | None = None
    password: str | None = None


class ActivationResponse(RemoteModel):
    """Réponse de `/activate` et `/activate-tenant`."""

    instance_id: str | None = None
    hmac_secret: str | None = None
    status: str | None = None
    contract_start: str | None = None
    contract_end: str | None = None
    superadmins: list[SuperAdminSpec] = Field(default_factory=list)
    error: str | None = None
    message: str | None = None


class StatusResponse(RemoteModel):
    """Réponse de `/status`."""

    status: str = "unknown"
    features: dict[str, Any] = Field(default_factory=dict)
    contract_end: str | None = None


class ErrorResponse(RemoteModel):
    """Corps d'erreur: `error`/`message` ou `detail` selon l'endpoint."""

    error: str | None = None
    message: str | None = None
    detail: Any = None

    def detail_text(self) -> str:
        """Texte consulté pour distinguer signature invalide et désactivation."""
        for value in (self.detail, self.message, self.error):
            if value:
                return value if isinstance(value, str) else str(value)
        return ""

    def mentions_signature(self) -> bool:
        """Vrai si le détail d'erreur concerne la signature HMAC."""
        return "signature" in self.detail_text().lower()


def parse_model(model: type[RemoteModel], data: Any) -> RemoteModel | None:
    """Valide `data` contre `model`; None si le corps n'est pas exploitable."""
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(data)
    except ValidationError:
        return None
