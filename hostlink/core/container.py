"""
Conteneur d'injection de dépendances et configuration application.

Instancie les composants centraux (settings, moteur SQL, client du
control-plane, services d'activation et de dispatch) et expose un singleton
`container` utilisé par le reste de l'application. L'application hôte
branche ses propres collaborateurs via `container.bind_host(...)`.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
from sqlalchemy.engine import Engine

from hostlink.core.settings import Settings, get_settings
from hostlink.domain.collaborators import (
    HostDirectory,
    PayloadPackager,
    TenantResolver,
    UserProvisioner,
)
from hostlink.infra.host.memory import (
    DictPayloadPackager,
    InMemoryDirectory,
    InMemoryUserProvisioner,
    StaticTenantResolver,
)
from hostlink.infra.http_clients import ControlPlaneClient
from hostlink.infra.ops.single_flight import SingleFlightLock, dispatch_lock
from hostlink.infra.repo.db import get_engine, init_schema
from hostlink.services.activation import ActivationGateway
from hostlink.services.activation_state import ActivationState
from hostlink.services.credentials import CredentialProvisioner
from hostlink.services.dispatcher import Dispatcher
from hostlink.services.event_capture import EventCapture
from hostlink.services.maintenance import MaintenanceService
from hostlink.services.outbox import OutboxStore


class Container:
    """Assemble les services à partir des settings et des collaborateurs hôte."""

    def __init__(
        self,
        settings: Settings | None = None,
        engine: Engine | None = None,
        transport: httpx.BaseTransport | None = None,
        lock: SingleFlightLock | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine or get_engine(self.settings.DATABASE_URL)
        if self.engine.url.get_backend_name() == "sqlite":
            init_schema(self.engine)
        self.storage_backend = self.engine.url.get_backend_name()
        self._transport = transport
        self._lock = lock or dispatch_lock
        self._clock = clock
        directory = InMemoryDirectory()
        self.bind_host(
            directory=directory,
            resolver=StaticTenantResolver(),
            packager=DictPayloadPackager(),
            user_provisioner=InMemoryUserProvisioner(directory),
        )

    def bind_host(
        self,
        directory: HostDirectory,
        resolver: TenantResolver,
        packager: PayloadPackager,
        user_provisioner: UserProvisioner | None = None,
    ) -> None:
        """Branche les collaborateurs de l'hôte et reconstruit les services."""
        s = self.settings
        clock = {"clock": self._clock} if self._clock else {}
        self.directory = directory
        self.resolver = resolver
        self.packager = packager
        self.user_provisioner = user_provisioner
        self.client = ControlPlaneClient(
            s.CONTROL_PLANE_URL,
            connect_timeout=s.HTTP_CONNECT_TIMEOUT_S,
            timeout=s.HTTP_TIMEOUT_S,
            verify=s.TLS_VERIFY,
            transport=self._transport,
        )
        self.activation_state = ActivationState(self.engine, **clock)
        self.outbox = OutboxStore(self.engine, self.activation_state, **clock)
        self.credentials = CredentialProvisioner(
            self.engine, directory, service_username=s.SERVICE_USERNAME, **clock
        )
        self.gateway = ActivationGateway(
            self.engine,
            self.client,
            directory,
            self.credentials,
            self.outbox,
            self.activation_state,
            s,
            user_provisioner=user_provisioner,
            **clock,
        )
        self.dispatcher = Dispatcher(
            self.outbox,
            self.gateway,
            self.activation_state,
            self.client,
            directory,
            self._lock,
            s,
            **clock,
        )
        self.gateway.bind_dispatcher(self.dispatch_now)
        self.capture = EventCapture(self.outbox, resolver, packager)
        self.maintenance = MaintenanceService(
            self.engine,
            directory,
            self.gateway,
            self.credentials,
            self.outbox,
            dispatch=self.dispatch_now,
            **clock,
        )

    def dispatch_now(self) -> int:
        """Un cycle de dispatch avec la taille de lot configurée."""
        return self.dispatcher.dispatch_pending(self.settings.DISPATCH_BATCH_SIZE)


container = Container()
