"""Taxonomie des erreurs du connecteur.

Les catégories `ErrorKind` qualifient les résultats structurés
(`ActivationResult`, `StatusResult`) et les labels de métriques. Sur les chemins
d'activation, ces erreurs sont converties en résultats
(`ActivationResult.from_error`) et ne remontent jamais aux appelants.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Catégories d'erreurs exposées aux appelants."""

    MODE_MISMATCH = "mode_mismatch"
    NOT_FOUND = "not_found"
    REMOTE_REJECTED = "remote_rejected"
    CONNECTION_FAILED = "connection_failed"
    SIGNATURE_MISMATCH = "signature_mismatch"
    DEACTIVATED = "deactivated"
    INVALID_RESPONSE = "invalid_response"


class HostLinkError(Exception):
    """Erreur de base du connecteur."""

    kind: ErrorKind = ErrorKind.REMOTE_REJECTED

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.value


class ModeMismatch(HostLinkError):
    """Opération invalide pour le mode (mono/multi-tenant) du déploiement."""

    kind = ErrorKind.MODE_MISMATCH


class NotFound(HostLinkError):
    """Tenant (ou entité) inconnu."""

    kind = ErrorKind.NOT_FOUND


class RemoteRejected(HostLinkError):
    """Erreur structurée renvoyée par le control-plane, message transmis tel quel."""

    kind = ErrorKind.REMOTE_REJECTED


class InvalidResponse(RemoteRejected):
    """Réponse HTTP 200 inexploitable (JSON invalide, champ obligatoire absent)."""

    kind = ErrorKind.INVALID_RESPONSE


class ConnectionFailed(HostLinkError):
    """Échec réseau ou timeout vers le control-plane."""

    kind = ErrorKind.CONNECTION_FAILED


class SignatureMismatch(HostLinkError):
    """403 dont le détail mentionne la signature: secret désynchronisé, récupérable."""

    kind = ErrorKind.SIGNATURE_MISMATCH


class Deactivated(HostLinkError):
    """Désactivation ou expiration confirmée par le control-plane."""

    kind = ErrorKind.DEACTIVATED
