"""
Pattern Unit of Work.

Le Unit of Work (UoW) gère la notion de transaction atomique.
Il coordonne l'écriture en base de données, la collecte des
événements émis par les agrégats et la notification des abonnés.

Le UoW agit comme un context manager :
    with uow:
        # ... opérations sur les repositories ...
        uow.commit()

Plusieurs commits peuvent se succéder dans un même bloc : chacun
valide une transaction indépendante (c'est ce que fait la création
de vente, qui enregistre la vente avant de décrémenter les lots).
"""

from __future__ import annotations

import abc
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from elevage import config
from elevage.adapters import repository
from elevage.adapters.abonnements import Diffuseur
from elevage.domain import events

DEFAULT_ENGINE = create_engine(
    config.get_database_uri(),
    isolation_level="SERIALIZABLE",
)

DEFAULT_SESSION_FACTORY = sessionmaker(bind=DEFAULT_ENGINE)


class AbstractUnitOfWork(abc.ABC):
    """
    Interface abstraite du Unit of Work.

    Fournit les repositories `lots` et `ventes` et gère commit/rollback.
    Le rollback est automatique si commit() n'est pas appelé
    (grâce au __exit__ du context manager).
    """

    lots: repository.AbstractLotRepository
    ventes: repository.AbstractVenteRepository

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    def commit(self) -> None:
        self._commit()
        for repo in self._repositories():
            repo.publier()

    def rollback(self) -> None:
        self._rollback()
        for repo in self._repositories():
            repo.abandonner()

    def collect_new_events(self) -> Iterator[events.Event]:
        """
        Collecte les événements des agrégats écrits puis validés
        pendant cette transaction, pour les passer au message bus.
        """
        for repo in self._repositories():
            while repo.événements:
                yield repo.événements.pop(0)

    def _repositories(self) -> tuple[repository.AbstractRepository, ...]:
        return (self.lots, self.ventes)

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _rollback(self) -> None:
        raise NotImplementedError


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Implémentation concrète du UoW avec SQLAlchemy.

    Crée une session à l'entrée du context manager,
    la ferme à la sortie. Rollback automatique si pas de commit.
    Le diffuseur d'abonnements survit aux sessions successives.
    """

    def __init__(
        self,
        session_factory: sessionmaker = DEFAULT_SESSION_FACTORY,
        diffuseur: Optional[Diffuseur] = None,
    ):
        self.session_factory = session_factory
        self.diffuseur = diffuseur or Diffuseur()
        self.session: Optional[Session] = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.session = self.session_factory()
        self.lots = repository.SqlAlchemyLotRepository(self.session, self.diffuseur)
        self.ventes = repository.SqlAlchemyVenteRepository(self.session, self.diffuseur)
        return super().__enter__()

    def __exit__(self, *args: object) -> None:
        super().__exit__(*args)
        self.session.close()

    def _repositories(self) -> tuple[repository.AbstractRepository, ...]:
        # Aucun repository avant la première transaction
        if self.session is None:
            return ()
        return super()._repositories()

    def _commit(self) -> None:
        self.session.commit()

    def _rollback(self) -> None:
        self.session.rollback()
