"""Configuration de test pour pytest avec gestion des chemins.

Ce module configure pytest pour résoudre les imports `hostlink` en ajoutant la racine du projet au
sys.path pour les tests, et isole les tests de tout serveur Redis.
"""

import os
import sys
from unittest.mock import Mock, patch

import pytest

# Ensure project root is on sys.path so that
# imports like `from hostlink...` and `from tests.fakes` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture(autouse=True)
def mock_redis_connection():
    """Mock Redis connections pour éviter les erreurs de connexion dans les tests."""
    with patch("redis.Redis") as mock_redis:
        mock_redis_instance = Mock()
        mock_redis_instance.ping.return_value = True
        mock_redis_instance.get.return_value = None
        mock_redis_instance.set.return_value = True
        mock_redis_instance.delete.return_value = 1
        mock_redis_instance.eval.return_value = 1
        mock_redis.return_value = mock_redis_instance
        mock_redis.from_url.return_value = mock_redis_instance
        yield mock_redis_instance
