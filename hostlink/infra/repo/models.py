"""SQLAlchemy models for the persistence layer.

Tables: état du déploiement (ligne unique), activations tenant, outbox
d'événements, identités de service, associations identité/tenant et jetons.
Les horodatages métier sont des epochs entiers (secondes UTC).
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles SQLAlchemy."""

    metadata = MetaData()


class DeploymentStateORM(Base):
    """État du déploiement (une seule ligne, id=1)."""

    __tablename__ = "deployment_state"

    id = Column(Integer, primary_key=True)
    instance_id = Column(String(128), nullable=True)
    secret = Column(String(128), nullable=True)
    activated = Column(Boolean, nullable=False, default=False)
    epoch = Column(Integer, nullable=False, default=0)
    last_status_check = Column(Integer, nullable=False, default=0)
    contract_start = Column(Integer, nullable=True)
    contract_end = Column(Integer, nullable=True)
    features = Column(JSON, nullable=False, default=dict)
    updated_at = Column(Integer, nullable=False, default=0)


class TenantActivationORM(Base):
    """Activation d'un tenant (jamais supprimée physiquement)."""

    __tablename__ = "tenant_activations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, unique=True)
    enabled = Column(Boolean, nullable=False, default=False)
    expiry_date = Column(Integer, nullable=True)
    activation_code = Column(String(64), nullable=True)
    contract_start = Column(Integer, nullable=True)
    plugin_version = Column(String(32), nullable=True)
    enabled_by = Column(Integer, nullable=False, default=0)
    created_at = Column(Integer, nullable=False, default=0)
    modified_at = Column(Integer, nullable=False, default=0)


class OutboxEventORM(Base):
    """Événement d'outbox en attente, envoyé ou en échec."""

    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False)
    actor_id = Column(Integer, nullable=False, default=0)
    tenant_id = Column(Integer, nullable=False, default=0)
    payload = Column(Text, nullable=False, default="{}")
    status = Column(String(16), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(Integer, nullable=False, default=0)
    last_response = Column(String(500), nullable=True)
    epoch = Column(Integer, nullable=False, default=0)
    created_at = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_outbox_status_created", "status", "created_at"),
        Index("ix_outbox_tenant", "tenant_id"),
    )


class ServiceIdentityORM(Base):
    """Identité porteuse de jetons (compte de service ou administrateur)."""

    __tablename__ = "service_identities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    kind = Column(String(16), nullable=False, default="service")
    host_user_id = Column(Integer, nullable=False, default=0)
    capabilities = Column(JSON, nullable=False, default=list)
    created_at = Column(Integer, nullable=False, default=0)


class IdentityTenantORM(Base):
    """Association d'une identité à un tenant."""

    __tablename__ = "identity_tenants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity_id = Column(Integer, ForeignKey("service_identities.id"), nullable=False)
    tenant_id = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("identity_id", "tenant_id", name="uq_identity_tenant"),)


class ServiceCredentialORM(Base):
    """Jeton de callback pour une paire (identité, tenant)."""

    __tablename__ = "service_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(64), nullable=False, unique=True)
    identity_id = Column(Integer, ForeignKey("service_identities.id"), nullable=False)
    tenant_id = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    valid_until = Column(Integer, nullable=False, default=0)
    epoch = Column(Integer, nullable=False, default=0)
    created_at = Column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_credential_pair", "identity_id", "tenant_id"),)
