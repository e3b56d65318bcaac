# ============================================================
# Module : alembic/env.py
# Objet  : Environnement Alembic des tables du connecteur
#          (deployment_state, tenant_activation, outbox, identités, jetons).
# Contexte : L'URL est celle de l'application (DATABASE_URL / .env), avec un
#            fichier SQLite local en repli. Mode batch pour les ALTER SQLite.
# ============================================================
"""Environnement Alembic (modes offline et online)."""

from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import create_engine, pool

from alembic import context  # type: ignore[attr-defined]

# Racine du dépôt importable depuis la CLI Alembic
_root = str(Path(__file__).resolve().parent.parent)
if _root not in sys.path:
    sys.path.append(_root)

from hostlink.core.settings import get_settings  # noqa: E402
from hostlink.infra.repo.models import Base  # noqa: E402

FALLBACK_URL = "sqlite:///./hostlink.db"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    """URL cible: configuration applicative, sinon `sqlalchemy.url` de l'ini, sinon SQLite."""
    return get_settings().DATABASE_URL or config.get_main_option("sqlalchemy.url") or FALLBACK_URL


def _configure_kwargs(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Génère le SQL des migrations sans connexion (bindings littéraux)."""
    url = _database_url()
    context.configure(url=url, literal_binds=True, **_configure_kwargs(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Applique les migrations sur une connexion dédiée (sans pool)."""
    url = _database_url()
    connectable = create_engine(url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
