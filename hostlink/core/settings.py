"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env

Le fichier d'override local permet notamment de pointer `CONTROL_PLANE_URL`
vers une instance de développement et de désactiver la vérification TLS.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default

# Chemins relatifs du control-plane distant
ACTIVATE_PATH = "/activate"
ACTIVATE_TENANT_PATH = "/activate-tenant"
STATUS_PATH = "/status"
EVENTS_PATH = "/events"


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )
    APP_NAME: str = "hostlink"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000
    # Niveau de log; rendu JSON hors environnement `dev`
    LOG_LEVEL: str = "DEBUG"
    # Version/release du connecteur annoncées au control-plane
    APP_VERSION: str = "2025101800"
    APP_RELEASE: str = "1.0.0"

    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    OTLP_ENDPOINT: str | None = None
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/1"

    # Control-plane distant
    CONTROL_PLANE_URL: str = "https://api.control-plane.example.com/api/v1/plugin"
    WEBHOOK_ENABLED: bool = True
    TLS_VERIFY: bool = True
    HTTP_CONNECT_TIMEOUT_S: float = 2.0
    HTTP_TIMEOUT_S: float = 8.0

    # Identité du déploiement (métadonnées envoyées à l'activation)
    DEPLOYMENT_URL: str = "http://localhost:8000"
    SITE_NAME: str = "Host application"
    ADMIN_EMAIL: str = ""

    # Dispatcher
    DISPATCH_BATCH_SIZE: int = 50
    DISPATCH_INTERVAL_S: int = 60
    DISPATCH_LOCK_TTL_S: int = 120

    # Identité de service pour les callbacks
    SERVICE_USERNAME: str = "hostlink_service"
    CLEANUP_EXPIRED_CREDENTIALS: bool = True

    # API d'administration (désactivée si vide)
    ADMIN_API_KEY: str = ""


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
