# ============================================================
# Module : hostlink/infra/http_clients.py
# Objet  : Client HTTP du control-plane (activation, statut, ingestion).
# Contexte : Appels synchrones bornés par un timeout court; toute erreur
#            réseau est convertie en ConnectionFailed.
# ============================================================

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from opentelemetry import trace

from hostlink.app.metrics import REMOTE_LATENCY, REMOTE_REQUESTS
from hostlink.core.errors import ConnectionFailed
from hostlink.core.http_constants import HTTP_FORBIDDEN, HTTP_OK
from hostlink.domain.remote import ErrorResponse, parse_model

PENDING_INSTANCE_ID = "pending"

_tracer = trace.get_tracer(__name__)


@dataclass
class RemoteReply:
    """Réponse brute du control-plane (statut, texte, JSON décodé si possible)."""

    status_code: int
    text: str
    data: Any = field(default=None)

    @property
    def ok(self) -> bool:
        """Vrai pour HTTP 200."""
        return self.status_code == HTTP_OK

    @property
    def forbidden(self) -> bool:
        """Vrai pour HTTP 403."""
        return self.status_code == HTTP_FORBIDDEN

    def error(self) -> ErrorResponse:
        """Corps d'erreur normalisé (`error`/`message`/`detail`)."""
        parsed = parse_model(ErrorResponse, self.data)
        return parsed if isinstance(parsed, ErrorResponse) else ErrorResponse()


class ControlPlaneClient:
    """Client du control-plane distant.

    Les en-têtes de signature sont calculés par l'appelant; ce client se
    contente d'émettre les octets fournis tels quels, afin que la signature
    porte exactement sur le corps transmis.
    """

    def __init__(
        self,
        base_url: str,
        *,
        connect_timeout: float = 2.0,
        timeout: float = 8.0,
        verify: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._log = structlog.get_logger(__name__).bind(component="control_plane_client")
        http_timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._client = httpx.Client(timeout=http_timeout, verify=verify, transport=transport)

    def close(self) -> None:
        """Ferme le pool de connexions."""
        self._client.close()

    def post(self, path: str, body: bytes, headers: dict[str, str]) -> RemoteReply:
        """POST `body` (JSON déjà sérialisé) vers `path`."""
        all_headers = {"Content-Type": "application/json", **headers}
        return self._send("POST", path, content=body, headers=all_headers)

    def get(self, path: str, params: dict[str, str], headers: dict[str, str]) -> RemoteReply:
        """GET `path` avec paramètres de requête."""
        return self._send("GET", path, params=params, headers=headers)

    def _send(self, method: str, path: str, **kwargs: Any) -> RemoteReply:
        url = f"{self.base_url}{path}"
        endpoint = path.strip("/") or "root"
        start = time.perf_counter()
        with _tracer.start_as_current_span(f"control_plane {method} {path}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.url", url)
            try:
                resp = self._client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                REMOTE_REQUESTS.labels(endpoint, "error").inc()
                span.set_attribute("error", True)
                self._log.warning(
                    "control_plane_unreachable", endpoint=endpoint, error=type(exc).__name__
                )
                raise ConnectionFailed(f"{type(exc).__name__}: {exc}") from exc
            finally:
                REMOTE_LATENCY.labels(endpoint).observe(time.perf_counter() - start)
            span.set_attribute("http.status_code", resp.status_code)
        REMOTE_REQUESTS.labels(endpoint, str(resp.status_code)).inc()
        try:
            data = resp.json()
        except ValueError:
            data = None
        self._log.debug("control_plane_reply", endpoint=endpoint, status=resp.status_code)
        return RemoteReply(status_code=resp.status_code, text=resp.text, data=data)
