"""
Events du domaine.

Les events représentent des faits qui se sont produits dans le système.
Ils sont immuables et nommés au passé (quelque chose s'est passé).
"""

from dataclasses import dataclass
from typing import Optional


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


@dataclass(frozen=True)
class LotCréé(Event):
    """Un nouveau lot a été mis en place dans une organisation."""

    id_lot: str
    id_organisation: str
    nom: str
    type_lot: str
    quantité_initiale: int


@dataclass(frozen=True)
class LotÉpuisé(Event):
    """La dernière unité d'un lot a été vendue."""

    id_lot: str
    id_organisation: str
    nom: str


@dataclass(frozen=True)
class MortalitéEnregistrée(Event):
    """Des pertes ont été déclarées sur un lot."""

    id_lot: str
    id_organisation: str
    quantité: int
    quantité_restante: int


@dataclass(frozen=True)
class VenteCréée(Event):
    """Une vente a été enregistrée (statut en attente)."""

    id_vente: str
    id_organisation: str
    numéro: str
    total: float


@dataclass(frozen=True)
class VenteLivrée(Event):
    id_vente: str
    id_organisation: str
    numéro: str


@dataclass(frozen=True)
class VenteAnnulée(Event):
    """Une vente a été annulée ; le stock n'est pas réintégré."""

    id_vente: str
    id_organisation: str
    numéro: str
    motif: Optional[str] = None
