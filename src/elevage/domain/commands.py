"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from elevage.domain.model import Client, TypeLot, TypeProduit


class Command:
    """Classe de base pour toutes les commands."""
    pass


# --- Lots ---


@dataclass(frozen=True)
class CréerLot(Command):
    """Demande de mise en place d'un nouveau lot."""

    id_organisation: str
    type_lot: TypeLot
    nom: str
    race: str
    date_début: date
    date_naissance: date
    quantité_initiale: int
    créé_par: str
    id_poulailler: Optional[str] = None
    observations: Optional[str] = None


@dataclass(frozen=True)
class EnregistrerMortalité(Command):
    id_lot: str
    id_organisation: str
    quantité: int


@dataclass(frozen=True)
class MettreÀJourPoids(Command):
    id_lot: str
    id_organisation: str
    poids: float


@dataclass(frozen=True)
class TerminerLot(Command):
    id_lot: str
    id_organisation: str
    observations: Optional[str] = None


@dataclass(frozen=True)
class LiquiderLot(Command):
    """Demande de passage d'un lot actif au statut vendu, hors vente."""

    id_lot: str
    id_organisation: str


# --- Ventes ---


@dataclass(frozen=True)
class LigneDemandée:
    """Une ligne de vente telle que saisie, avant calcul des montants."""

    id_lot: str
    type_produit: TypeProduit
    quantité: int
    prix_unitaire: float
    description: Optional[str] = None


@dataclass(frozen=True)
class CréerVente(Command):
    """Demande d'enregistrement d'une vente et de sortie du stock correspondant."""

    id_organisation: str
    client: Client
    lignes: tuple[LigneDemandée, ...]
    créé_par: str
    remise_totale: float = 0.0
    observations: Optional[str] = None


@dataclass(frozen=True)
class ConfirmerVente(Command):
    id_vente: str
    id_organisation: str


@dataclass(frozen=True)
class LivrerVente(Command):
    id_vente: str
    id_organisation: str
    date_livraison: Optional[datetime] = None


@dataclass(frozen=True)
class AnnulerVente(Command):
    id_vente: str
    id_organisation: str
    motif: Optional[str] = None
