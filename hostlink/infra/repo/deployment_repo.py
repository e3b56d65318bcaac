# ============================================================
# Module : hostlink/infra/repo/deployment_repo.py
# Objet  : Accès SQL à l'état du déploiement et aux activations tenant.
# ============================================================

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ...domain.models import DeploymentSnapshot, TenantActivation
from ...domain.signing import generate_secret
from .models import DeploymentStateORM, TenantActivationORM

_DEPLOYMENT_ROW_ID = 1


class DeploymentRepo:
    """Lecture/écriture de l'état unique du déploiement.

    La ligne est créée implicitement au premier accès et n'est jamais supprimée.
    """

    def __init__(self, session: Session) -> None:
        """Construit le repo avec une session (SQLAlchemy)."""
        self._session = session

    def _row(self) -> DeploymentStateORM:
        row = self._session.get(DeploymentStateORM, _DEPLOYMENT_ROW_ID)
        if row is None:
            row = DeploymentStateORM(
                id=_DEPLOYMENT_ROW_ID, activated=False, epoch=0, last_status_check=0, features={}
            )
            self._session.add(row)
            self._session.flush()
        return row

    def snapshot(self) -> DeploymentSnapshot:
        """Retourne une vue figée de l'état courant."""
        row = self._row()
        return DeploymentSnapshot(
            instance_id=row.instance_id,
            secret=row.secret,
            activated=bool(row.activated),
            epoch=int(row.epoch or 0),
            last_status_check=int(row.last_status_check or 0),
            contract_start=row.contract_start,
            contract_end=row.contract_end,
            features=dict(row.features or {}),
        )

    def ensure_secret(self, now: int) -> str:
        """Retourne le secret courant, en le générant s'il est absent."""
        row = self._row()
        if not row.secret:
            row.secret = generate_secret()
            row.updated_at = now
            self._session.flush()
        return row.secret

    def register(self, instance_id: str, secret: str | None, now: int, new_epoch: bool) -> int:
        """Enregistre l'identité distante et active le déploiement.

        Le secret fourni par le control-plane remplace le secret local. Si
        `new_epoch`, l'époque d'activation est incrémentée. Retourne l'époque courante.
        """
        row = self._row()
        row.instance_id = instance_id
        if secret:
            row.secret = secret
        if not row.secret:
            raise ValueError("cannot activate a deployment without secret")
        if new_epoch:
            row.epoch = int(row.epoch or 0) + 1
        row.activated = True
        row.updated_at = now
        self._session.flush()
        return int(row.epoch)

    def set_activated(self, activated: bool, now: int) -> bool:
        """Met à jour le drapeau d'activation; retourne l'ancienne valeur."""
        row = self._row()
        previous = bool(row.activated)
        if activated and not (row.instance_id and row.secret):
            raise ValueError("activated deployment requires instance_id and secret")
        row.activated = activated
        row.updated_at = now
        self._session.flush()
        return previous

    def stamp_status_check(self, now: int) -> None:
        """Horodate la dernière vérification de statut."""
        self._row().last_status_check = now
        self._session.flush()

    def set_features(self, features: dict) -> None:
        """Remplace les feature flags mis en cache."""
        self._row().features = dict(features or {})
        self._session.flush()

    def set_contract(self, start: int | None, end: int | None, now: int) -> None:
        """Enregistre les dates de contrat (epochs midi UTC)."""
        row = self._row()
        if start is not None:
            row.contract_start = start
        if end is not None:
            row.contract_end = end
        row.updated_at = now
        self._session.flush()


def _to_domain(row: TenantActivationORM) -> TenantActivation:
    return TenantActivation(
        tenant_id=row.tenant_id,
        enabled=bool(row.enabled),
        expiry_date=row.expiry_date,
        activation_code=row.activation_code,
        contract_start=row.contract_start,
        plugin_version=row.plugin_version,
        enabled_by=int(row.enabled_by or 0),
        created_at=int(row.created_at or 0),
        modified_at=int(row.modified_at or 0),
    )


class TenantActivationRepo:
    """CRUD minimal pour les activations tenant (pas de suppression)."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _find(self, tenant_id: int) -> TenantActivationORM | None:
        stmt = select(TenantActivationORM).where(TenantActivationORM.tenant_id == tenant_id)
        return self._session.execute(stmt).scalars().first()

    def get(self, tenant_id: int) -> TenantActivation | None:
        """Retourne l'activation du tenant, ou None si jamais créée."""
        row = self._find(tenant_id)
        return _to_domain(row) if row else None

    def upsert(
        self,
        tenant_id: int,
        now: int,
        *,
        enabled: bool,
        expiry_date: int | None,
        contract_start: int | None,
        activation_code: str | None,
        plugin_version: str | None,
        enabled_by: int,
    ) -> TenantActivation:
        """Crée ou met à jour l'activation d'un tenant."""
        row = self._find(tenant_id)
        if row is None:
            row = TenantActivationORM(tenant_id=tenant_id, created_at=now)
            self._session.add(row)
        row.enabled = enabled
        row.expiry_date = expiry_date
        row.contract_start = contract_start
        row.activation_code = activation_code
        row.plugin_version = plugin_version
        row.enabled_by = enabled_by
        row.modified_at = now
        self._session.flush()
        return _to_domain(row)

    def update(self, tenant_id: int, now: int, **fields) -> TenantActivation | None:
        """Met à jour certains champs d'une activation existante."""
        row = self._find(tenant_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        row.modified_at = now
        self._session.flush()
        return _to_domain(row)

    def list_enabled_expired(self, cutoff: int) -> list[TenantActivation]:
        """Tenants activés dont `expiry_date` est antérieure à `cutoff`."""
        stmt = (
            select(TenantActivationORM)
            .where(TenantActivationORM.enabled.is_(True))
            .where(TenantActivationORM.expiry_date.is_not(None))
            .where(TenantActivationORM.expiry_date > 0)
            .where(TenantActivationORM.expiry_date < cutoff)
            .order_by(TenantActivationORM.tenant_id)
        )
        return [_to_domain(r) for r in self._session.execute(stmt).scalars().all()]

    def list_all(self) -> list[TenantActivation]:
        """Toutes les activations connues."""
        stmt = select(TenantActivationORM).order_by(TenantActivationORM.tenant_id)
        return [_to_domain(r) for r in self._session.execute(stmt).scalars().all()]
