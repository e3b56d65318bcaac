"""Dépendances partagées pour les routes de l'API.

But du module
-------------
- Exposer le conteneur de services aux endpoints (surchargeable en test via
  `app.dependency_overrides[get_container]`).
- Protéger les routes d'administration par l'en-tête `X-Admin-Key` lorsque
  `ADMIN_API_KEY` est configuré.
"""

import hmac

from fastapi import Depends, Header, HTTPException

from hostlink.core.container import Container, container
from hostlink.core.http_constants import HTTP_UNAUTHORIZED


def get_container() -> Container:
    """Retourne le conteneur applicatif."""
    return container


def require_admin_key(
    x_admin_key: str | None = Header(default=None),
    c: Container = Depends(get_container),
) -> None:
    """Vérifie la clé d'administration (comparaison en temps constant)."""
    expected = c.settings.ADMIN_API_KEY
    if not expected:
        return
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=HTTP_UNAUTHORIZED, detail="Invalid admin key")
