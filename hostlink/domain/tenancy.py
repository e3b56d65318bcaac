"""Dates de contrat et règles d'activité des tenants.

Les dates de contrat reçues du control-plane sont des dates calendaires
(`YYYY-MM-DD`). Elles sont épinglées à midi UTC pour éviter qu'un rendu dans
un autre fuseau ne les décale d'un jour. Les contrôles d'expiration ajoutent
une fenêtre de grâce de 12 heures: le dernier jour reste valide en entier,
quel que soit le fuseau de l'observateur.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time

GRACE_WINDOW_SECONDS = 43200
CONTRACT_TIME_OF_DAY = time(12, 0, 0, tzinfo=UTC)

# Tenant implicite du mode mono-tenant et des événements non rattachés
NO_TENANT = 0


def parse_contract_date(value: str | date | None) -> int | None:
    """Convertit une date calendaire en epoch à midi UTC.

    Accepte une chaîne `YYYY-MM-DD` (les suffixes horaires éventuels sont
    ignorés), un objet `date` ou None. Retourne None pour une valeur vide ou
    illisible.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        day = value.date()
    elif isinstance(value, date):
        day = value
    else:
        try:
            day = date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return None
    return int(datetime.combine(day, CONTRACT_TIME_OF_DAY).timestamp())


def format_contract_date(epoch: int | None) -> str | None:
    """Retourne la date calendaire (`YYYY-MM-DD`) d'un epoch de contrat."""
    if not epoch:
        return None
    return datetime.fromtimestamp(epoch, UTC).date().isoformat()


def is_expired(expiry: int | None, now: int) -> bool:
    """Vrai si `expiry + GRACE_WINDOW_SECONDS` est dépassé."""
    if not expiry:
        return False
    return expiry + GRACE_WINDOW_SECONDS < now


def is_active(enabled: bool, expiry: int | None, now: int) -> bool:
    """Un tenant est actif s'il est activé et non expiré (grâce incluse)."""
    return bool(enabled) and not is_expired(expiry, now)
