"""
Routes d'administration du connecteur.

Ce module regroupe les endpoints `/admin` pour activer le déploiement ou un
tenant, forcer une vérification de statut, gérer l'accès et l'expiration des
tenants, et déclencher un cycle de dispatch manuel. Les échecs d'activation
sont renvoyés comme résultats structurés (HTTP 200, `success=false`).
"""

from fastapi import APIRouter, Depends, HTTPException

from hostlink.api.deps import get_container, require_admin_key
from hostlink.api.schemas import (
    AccessRequest,
    ActivationRequest,
    ActivationResponse,
    DispatchResponse,
    ExpiryRequest,
    StatusCheckResponse,
    TenantStatusResponse,
)
from hostlink.core.container import Container
from hostlink.core.errors import HostLinkError, ModeMismatch, NotFound
from hostlink.core.http_constants import HTTP_BAD_REQUEST, HTTP_CONFLICT, HTTP_NOT_FOUND
from hostlink.domain.models import TenantActivation
from hostlink.domain.tenancy import format_contract_date

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])
container_dep = Depends(get_container)


def _http_error(err: HostLinkError) -> HTTPException:
    if isinstance(err, NotFound):
        return HTTPException(status_code=HTTP_NOT_FOUND, detail=err.message)
    if isinstance(err, ModeMismatch):
        return HTTPException(status_code=HTTP_CONFLICT, detail=err.message)
    return HTTPException(status_code=HTTP_BAD_REQUEST, detail=err.message)


def _tenant_view(c: Container, record: TenantActivation) -> TenantStatusResponse:
    return TenantStatusResponse(
        tenant_id=record.tenant_id,
        enabled=record.enabled,
        active=c.gateway.is_tenant_active(record.tenant_id),
        expiry_date=format_contract_date(record.expiry_date),
        contract_start=format_contract_date(record.contract_start),
        activation_code=record.activation_code,
    )


@router.post("/activation", response_model=ActivationResponse)
def activate_deployment(payload: ActivationRequest, c: Container = container_dep):
    """Active le déploiement (mode mono-tenant)."""
    return c.gateway.activate_deployment(payload.code, actor_id=payload.actor_id).to_dict()


@router.post("/tenants/{tenant_id}/activation", response_model=ActivationResponse)
def activate_tenant(tenant_id: int, payload: ActivationRequest, c: Container = container_dep):
    """Active un tenant (mode multi-tenant)."""
    result = c.gateway.activate_tenant(tenant_id, payload.code, enabled_by=payload.actor_id)
    return result.to_dict()


@router.get("/tenants/{tenant_id}", response_model=TenantStatusResponse)
def tenant_status(tenant_id: int, c: Container = container_dep):
    """Retourne l'état d'activation d'un tenant."""
    record = c.gateway.tenant_status(tenant_id)
    if record is None:
        raise HTTPException(status_code=HTTP_NOT_FOUND, detail="Tenant never activated")
    return _tenant_view(c, record)


@router.put("/tenants/{tenant_id}/expiry", response_model=TenantStatusResponse)
def set_expiry(tenant_id: int, payload: ExpiryRequest, c: Container = container_dep):
    """Met à jour la fin de contrat (et l'état activé, sauf `keep_enabled_flag`)."""
    try:
        if payload.keep_enabled_flag:
            record = c.gateway.set_tenant_expiry_date(
                tenant_id, payload.expiry_date, actor_id=payload.actor_id
            )
        else:
            record = c.gateway.set_tenant_expiry(
                tenant_id, payload.expiry_date, actor_id=payload.actor_id
            )
    except HostLinkError as err:
        raise _http_error(err) from err
    return _tenant_view(c, record)


@router.post("/tenants/{tenant_id}/access", response_model=TenantStatusResponse)
def set_access(tenant_id: int, payload: AccessRequest, c: Container = container_dep):
    """Active ou désactive administrativement un tenant."""
    try:
        if payload.enabled:
            record = c.gateway.enable_tenant(tenant_id, actor_id=payload.actor_id)
        else:
            record = c.gateway.disable_tenant(
                tenant_id, actor_id=payload.actor_id, clear_activation=payload.clear_activation
            )
    except HostLinkError as err:
        raise _http_error(err) from err
    return _tenant_view(c, record)


@router.post("/status-check", response_model=StatusCheckResponse)
def status_check(force: bool = True, c: Container = container_dep):
    """Interroge le control-plane (forcé par défaut depuis l'administration)."""
    result = c.gateway.check_status(force=force)
    return StatusCheckResponse(
        status=result.status,
        performed=result.performed,
        kind=result.kind.value if result.kind else None,
        deactivated=result.deactivated,
        features=result.features,
    )


@router.post("/dispatch", response_model=DispatchResponse)
def dispatch(c: Container = container_dep):
    """Déclenche un cycle de dispatch immédiat."""
    return DispatchResponse(dispatched=c.dispatch_now())
