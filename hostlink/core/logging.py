# ============================================================
# Module : hostlink/core/logging.py
# Objet  : Configuration structlog du connecteur (API et workers Celery).
# Contexte : Rendu console en développement, JSON ligne à ligne ailleurs.
#            Les composants se lient via `.bind(component=...)`.
# ============================================================
"""Configuration de logging basée sur structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

DEFAULT_LEVEL = logging.INFO


def resolve_level(name: str | int | None) -> int:
    """Niveau numérique à partir d'un nom (`"debug"`, `"WARNING"`...); INFO sinon."""
    if isinstance(name, int):
        return name
    if not name:
        return DEFAULT_LEVEL
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else DEFAULT_LEVEL


def build_processors(json_output: bool) -> list[Any]:
    """Chaîne de processeurs; seul le rendu final dépend de l'environnement."""
    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging(level: str | int | None = None, json_output: bool = False) -> None:
    """Configure structlog (niveau filtrant, rendu console ou JSON sur stdout)."""
    structlog.configure(
        processors=build_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
