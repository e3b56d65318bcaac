"""Politique de livraison des événements.

- Un événement en échec est retenté tant que `attempts < MAX_RETRY_ATTEMPTS`,
  jamais avant `last_attempt_at + backoff(attempts)`.
- Les événements envoyés sont conservés `CLEANUP_DAYS` jours.
"""

from __future__ import annotations

from hostlink.core.http_constants import RESPONSE_SNIPPET_MAX

MAX_RETRY_ATTEMPTS = 10
CLEANUP_DAYS = 30
STATUS_CHECK_INTERVAL = 300
BACKOFF_BASE_SECONDS = 60


def backoff(attempts: int) -> int:
    """Délai (s) avant la prochaine tentative: `2**attempts * 60`."""
    return (2 ** max(0, int(attempts))) * BACKOFF_BASE_SECONDS


def next_attempt_at(last_attempt_at: int, attempts: int) -> int:
    """Premier instant (exclu) où un événement en échec redevient éligible."""
    return int(last_attempt_at) + backoff(attempts)


def truncate_response(text: str | bytes | None) -> str:
    """Tronque une réponse distante à sa longueur de diagnostic."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[:RESPONSE_SNIPPET_MAX]
