# mypy: ignore-errors
"""
Migration Alembic initiale du connecteur.

Crée l'état du déploiement, les activations tenant, l'outbox d'événements,
les identités de service, leurs associations tenant et les jetons de callback.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20251101_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Crée les tables du connecteur et leurs index."""
    op.create_table(
        "deployment_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("instance_id", sa.String(length=128), nullable=True),
        sa.Column("secret", sa.String(length=128), nullable=True),
        sa.Column("activated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("epoch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_status_check", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("contract_start", sa.Integer(), nullable=True),
        sa.Column("contract_end", sa.Integer(), nullable=True),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "tenant_activations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expiry_date", sa.Integer(), nullable=True),
        sa.Column("activation_code", sa.String(length=64), nullable=True),
        sa.Column("contract_start", sa.Integer(), nullable=True),
        sa.Column("plugin_version", sa.String(length=32), nullable=True),
        sa.Column("enabled_by", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("modified_at", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tenant_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_response", sa.String(length=500), nullable=True),
        sa.Column("epoch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_outbox_status_created", "outbox_events", ["status", "created_at"])
    op.create_index("ix_outbox_tenant", "outbox_events", ["tenant_id"])
    op.create_table(
        "service_identities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=100), nullable=False, unique=True),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="service"),
        sa.Column("host_user_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "identity_tenants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "identity_id", sa.Integer(), sa.ForeignKey("service_identities.id"), nullable=False
        ),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("identity_id", "tenant_id", name="uq_identity_tenant"),
    )
    op.create_table(
        "service_credentials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "identity_id", sa.Integer(), sa.ForeignKey("service_identities.id"), nullable=False
        ),
        sa.Column("tenant_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("valid_until", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("epoch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_credential_pair", "service_credentials", ["identity_id", "tenant_id"])


def downgrade() -> None:
    """Supprime les tables du connecteur (ordre inverse des dépendances)."""
    op.drop_index("ix_credential_pair", table_name="service_credentials")
    op.drop_table("service_credentials")
    op.drop_table("identity_tenants")
    op.drop_table("service_identities")
    op.drop_index("ix_outbox_tenant", table_name="outbox_events")
    op.drop_index("ix_outbox_status_created", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_table("tenant_activations")
    op.drop_table("deployment_state")
