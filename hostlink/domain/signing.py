"""Secrets et signatures HMAC-SHA256.

Fonctions pures, sans état: génération de secrets/identifiants aléatoires,
sérialisation JSON canonique et signature hexadécimale des octets envoyés.
La signature porte toujours sur les octets exacts transmis dans le corps (ou
sur la chaîne du timestamp pour les requêtes GET).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from typing import Any

EVENT_ID_PREFIX = "evt_"


def generate_secret() -> str:
    """Génère un secret partagé de 64 caractères hexadécimaux (32 octets)."""
    return secrets.token_hex(32)


def generate_event_id() -> str:
    """Génère un identifiant d'événement unique: `evt_` + 32 caractères hex."""
    return EVENT_ID_PREFIX + secrets.token_hex(16)


def generate_token() -> str:
    """Génère un jeton de callback (64 caractères hex)."""
    return secrets.token_hex(32)


def canonical_json(payload: Any) -> bytes:
    """Sérialise une charge utile en octets JSON compacts et stables."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(payload: bytes | str, secret: str) -> str:
    """Calcule la signature hex HMAC-SHA256 de `payload` avec `secret`."""
    data = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes | str, secret: str, signature: str) -> bool:
    """Compare une signature en temps constant."""
    return hmac.compare_digest(sign_payload(payload, secret), signature or "")


def mask_code(code: str, visible: int = 8) -> str:
    """Masque un code d'activation pour la journalisation (`ACT-1234****`)."""
    return (code or "")[:visible] + "****"
