"""
Abonnements aux changements.

Un Abonnement est un flux d'instantanés annulable : le repository y
pousse un instantané à l'ouverture, puis après chaque commit qui touche
l'organisation (ou l'agrégat) suivi. Le consommateur itère sur
l'abonnement pour vider les instantanés en attente.

    with uow:
        abonnement = uow.lots.abonner("org-1")
    for lots in abonnement:
        ...
    abonnement.fermer()

La fermeture est synchrone : dès le retour de `fermer()`, plus aucun
instantané n'est délivré et ceux en attente sont abandonnés.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from typing import Any, Callable, Hashable, Iterator

logger = logging.getLogger(__name__)


class Abonnement:
    """Flux d'instantanés pour une clé (organisation ou agrégat)."""

    def __init__(self, clé: Hashable, fermeture: Callable[[Abonnement], None]):
        self.clé = clé
        self.actif = True
        self._fermeture = fermeture
        self._en_attente: deque[Any] = deque()

    def __repr__(self) -> str:
        return f"<Abonnement {self.clé}>"

    def __iter__(self) -> Iterator[Any]:
        while self._en_attente:
            yield self._en_attente.popleft()

    def __enter__(self) -> Abonnement:
        return self

    def __exit__(self, *args: object) -> None:
        self.fermer()

    def pousser(self, instantané: Any) -> None:
        if self.actif:
            self._en_attente.append(instantané)

    def dernier(self) -> Any:
        """Vide le flux et retourne l'instantané le plus récent (None si vide)."""
        instantané = None
        for instantané in self:
            pass
        return instantané

    def fermer(self) -> None:
        if not self.actif:
            return
        self.actif = False
        self._en_attente.clear()
        self._fermeture(self)


class Diffuseur:
    """
    Registre des abonnements ouverts, partagé entre les Unit of Work.

    Les repositories sont recréés à chaque transaction ; le diffuseur,
    lui, vit aussi longtemps que l'application.
    """

    def __init__(self) -> None:
        self._abonnements: dict[Hashable, list[Abonnement]] = defaultdict(list)
        self._verrou = threading.Lock()

    def ouvrir(self, clé: Hashable) -> Abonnement:
        abonnement = Abonnement(clé, self._retirer)
        with self._verrou:
            self._abonnements[clé].append(abonnement)
        logger.debug("Abonnement ouvert : %s", clé)
        return abonnement

    def écouté(self, clé: Hashable) -> bool:
        with self._verrou:
            return bool(self._abonnements.get(clé))

    def diffuser(self, clé: Hashable, instantané: Any) -> None:
        with self._verrou:
            destinataires = list(self._abonnements.get(clé, ()))
        for abonnement in destinataires:
            abonnement.pousser(instantané)

    def _retirer(self, abonnement: Abonnement) -> None:
        with self._verrou:
            abonnés = self._abonnements.get(abonnement.clé, [])
            if abonnement in abonnés:
                abonnés.remove(abonnement)
            if not abonnés:
                self._abonnements.pop(abonnement.clé, None)
        logger.debug("Abonnement fermé : %s", abonnement.clé)
