"""Verrou single-flight des tâches planifiées (Redis ou mémoire).

- SingleFlightLock: `acquire(key, ttl)` / `release(key, token)` pour garantir
  qu'un seul cycle de dispatch s'exécute à la fois pour un déploiement.

Règle de clé recommandée:
    lock:{name}:{scope}

Utiliser `make_lock_key("dispatch", "default")` pour composer les clés.

Backend Redis (`SET NX EX`) si `REDIS_URL` est défini, sinon un store mémoire
adapté aux tests et aux déploiements mono-processus. Le TTL borne la durée de
détention si un worker meurt en cours de cycle.
"""

from __future__ import annotations

import os
import secrets
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import redis
import structlog

log = structlog.get_logger(__name__).bind(component="single_flight")


def make_lock_key(name: str, *parts: str) -> str:
    """Compose une clé de verrou stable `lock:{name}:{scope}`."""
    safe_parts = [str(p).replace("\n", " ").replace("\r", " ") for p in parts]
    suffix = ":".join(safe_parts) if safe_parts else ""
    return f"lock:{name}:{suffix}" if suffix else f"lock:{name}"


class _InMemoryKV:
    def __init__(self) -> None:
        self._exp: dict[str, float] = {}
        self._vals: dict[str, str] = {}
        self._mutex = threading.Lock()

    def _purge(self, key: str, now: float) -> None:
        exp = self._exp.get(key)
        if exp is not None and exp <= now:
            self._exp.pop(key, None)
            self._vals.pop(key, None)

    def setnx(self, key: str, value: str, ex: int) -> bool:
        with self._mutex:
            now = time.time()
            self._purge(key, now)
            if key in self._vals:
                return False
            self._vals[key] = value
            self._exp[key] = now + ex
            return True

    def release(self, key: str, value: str) -> bool:
        with self._mutex:
            self._purge(key, time.time())
            if self._vals.get(key) != value:
                return False
            self._vals.pop(key, None)
            self._exp.pop(key, None)
            return True


# Suppression conditionnelle: on ne libère que le verrou que l'on détient
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


def _redis_client():  # pragma: no cover - smoke path
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    try:
        return redis.Redis.from_url(url, decode_responses=True)
    except (redis.RedisError, ValueError):
        return None


@dataclass
class SingleFlightLock:
    """Verrou exclusif à durée limitée."""

    ttl_seconds: int = 120
    client: object | None = field(default=None)

    def __post_init__(self) -> None:
        """Initialise le client Redis ou fallback en mémoire."""
        if self.client is None:
            self.client = _redis_client() or _InMemoryKV()

    def acquire(self, key: str, ttl: int | None = None) -> str | None:
        """Tente d'acquérir `key`; retourne le jeton de détention ou None."""
        ttl = int(ttl or self.ttl_seconds)
        token = secrets.token_hex(8)
        if isinstance(self.client, _InMemoryKV):
            return token if self.client.setnx(key, token, ex=ttl) else None
        try:
            ok = self.client.set(name=key, value=token, nx=True, ex=ttl)  # type: ignore[attr-defined]
        except redis.RedisError as exc:
            # Redis indisponible: les verrous de lignes SQL restent la garde
            log.warning("single_flight_backend_unavailable", key=key, error=type(exc).__name__)
            return token
        return token if ok else None

    def release(self, key: str, token: str) -> bool:
        """Libère `key` si `token` correspond au détenteur courant."""
        if isinstance(self.client, _InMemoryKV):
            return self.client.release(key, token)
        try:
            return bool(self.client.eval(_RELEASE_SCRIPT, 1, key, token))  # type: ignore[attr-defined]
        except redis.RedisError:
            return False

    @contextmanager
    def hold(self, key: str, ttl: int | None = None) -> Iterator[bool]:
        """Contexte: `True` si le verrou est détenu pour la durée du bloc."""
        token = self.acquire(key, ttl)
        try:
            yield token is not None
        finally:
            if token is not None:
                self.release(key, token)


# Module singleton
dispatch_lock = SingleFlightLock()
