"""
Configuration partagée pour les tests.

La base par défaut est forcée en mémoire avant tout import du code
applicatif : le module Flask assemble son bus dès l'import, et les
tests ne doivent pas créer de fichier SQLite dans le répertoire courant.
"""

import os

os.environ.setdefault("ELEVAGE_DB_URI", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from elevage.adapters import orm


@pytest.fixture
def session_factory():
    """Fabrique de sessions sur une base SQLite en mémoire avec les tables."""
    engine = create_engine("sqlite:///:memory:")
    orm.créer_schéma(engine)
    return sessionmaker(bind=engine)
