"""
Configuration de l'application.

Toutes les valeurs sont lues depuis les variables d'environnement,
avec des valeurs par défaut adaptées au développement local.
"""

from __future__ import annotations

import os


def get_database_uri() -> str:
    """URI SQLAlchemy de la base (SQLite locale par défaut)."""
    return os.getenv("ELEVAGE_DB_URI", "sqlite:///elevage.db")


def get_préfixe_vente() -> str:
    """Préfixe des numéros de vente (ex. VTE-0001)."""
    return os.getenv("ELEVAGE_PREFIXE_VENTE", "VTE")


def get_seuil_alerte_mortalité() -> float:
    """Pourcentage de mortalité au-delà duquel une alerte est journalisée."""
    return float(os.getenv("ELEVAGE_SEUIL_MORTALITE", "5.0"))


def get_log_level() -> str:
    return os.getenv("ELEVAGE_LOG_LEVEL", "INFO").upper()
