"""
Modèle de domaine de la gestion d'élevage.

Ce module contient les deux agrégats du domaine : le Lot (une cohorte
de volailles gérée comme une seule unité de stock) et la Vente (une
commande composée de lignes tirées de lots).

Les entités sont immuables : chaque transition d'état retourne une
nouvelle instance, validée à nouveau, avec un horodatage de
modification rafraîchi. Aucune référence mutable n'est donc partagée
entre deux cas d'usage exécutés en parallèle.
"""

from __future__ import annotations

import enum
import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Iterable, Optional

from elevage.domain import events

# Écart toléré sur les montants (arrondis des prix flottants)
TOLÉRANCE = 0.01

_ALPHABET_BASE36 = string.digits + string.ascii_lowercase


# --- Exceptions ---


class ErreurValidation(Exception):
    """Donnée mal formée ou hors limites ; l'appelant peut corriger sa saisie."""
    pass


class ErreurDomaine(Exception):
    """Règle métier violée lors d'une transition d'état."""
    pass


class ErreurConflit(Exception):
    """Levée quand un lot actif porte déjà le même nom dans l'organisation."""
    pass


class ErreurIntrouvable(Exception):
    """Levée quand un agrégat référencé n'existe pas dans l'organisation."""
    pass


# --- Énumérations ---


class TypeLot(str, enum.Enum):
    PONTE = "PONTE"
    ÉLEVAGE = "ELEVAGE"
    ENGRAISSEMENT = "ENGRAISSEMENT"


class StatutLot(str, enum.Enum):
    ACTIF = "ACTIF"
    VENDU = "VENDU"
    TERMINÉ = "TERMINE"
    MORT = "MORT"


class MotifRéduction(str, enum.Enum):
    VENTE = "VENTE"
    MORTALITÉ = "MORTALITE"


class TypeProduit(str, enum.Enum):
    LOT_COMPLET = "LOT_COMPLET"
    UNITÉS = "UNITES"
    OEUFS = "OEUFS"


class StatutVente(str, enum.Enum):
    EN_ATTENTE = "EN_ATTENTE"
    CONFIRMÉE = "CONFIRMEE"
    LIVRÉE = "LIVREE"
    ANNULÉE = "ANNULEE"


# Âge minimum (en jours) avant de pouvoir vendre un lot
ÂGE_MINIMUM_VENTE: dict[TypeLot, int] = {
    TypeLot.PONTE: 120,         # 4 mois
    TypeLot.ÉLEVAGE: 21,        # 3 semaines
    TypeLot.ENGRAISSEMENT: 35,  # 5 semaines
}

# Poids moyen maximal plausible (kg)
POIDS_MAXIMUM: dict[TypeLot, float] = {
    TypeLot.PONTE: 5.0,
    TypeLot.ENGRAISSEMENT: 10.0,
}


def générer_identifiant(préfixe: str) -> str:
    """
    Génère un identifiant du type `lot_<horodatage>_<aléa>`.

    L'horodatage (millisecondes en base 36) est suivi de six caractères
    aléatoires. Les collisions sont improbables mais pas impossibles :
    la couche de stockage les signale et l'appelant régénère.
    """
    horodatage = _base36(int(time.time() * 1000))
    aléa = "".join(random.choices(_ALPHABET_BASE36, k=6))
    return f"{préfixe}_{horodatage}_{aléa}"


def _base36(nombre: int) -> str:
    chiffres = []
    while nombre:
        nombre, reste = divmod(nombre, 36)
        chiffres.append(_ALPHABET_BASE36[reste])
    return "".join(reversed(chiffres)) or "0"


def _renseigné(valeur: Optional[str]) -> bool:
    return bool(valeur and valeur.strip())


def _joindre_observations(existantes: Optional[str], ajout: str) -> str:
    return f"{existantes}\n{ajout}" if existantes else ajout


def _en_énumération(classe: type[enum.Enum], valeur: object, libellé: str):
    try:
        return classe(valeur)
    except ValueError:
        raise ErreurValidation(f"{libellé} inconnu : {valeur}") from None


def vérifier_entier(valeur: object, libellé: str) -> None:
    """Les effectifs se comptent en sujets entiers (les booléens sont refusés)."""
    if isinstance(valeur, bool) or not isinstance(valeur, int):
        raise ErreurValidation(f"{libellé} doit être un nombre entier : {valeur!r}")


# --- Agrégat Lot ---


@dataclass(frozen=True, eq=False)
class Lot:
    """
    Agrégat racine représentant un lot de volailles.

    L'identité est portée par `id` : deux versions successives du même
    lot sont égales. Les invariants sont vérifiés à chaque construction,
    donc aussi après chaque transition (qui passe par `replace`).

    `événements` accumule les events produits par les transitions depuis
    le chargement ; le repository les collecte à l'écriture.
    """

    id: str
    id_organisation: str
    type_lot: TypeLot
    nom: str
    race: str
    date_début: date
    date_naissance: date
    quantité_initiale: int
    quantité_actuelle: int
    statut: StatutLot
    créé_par: str
    créé_le: datetime
    modifié_le: datetime
    id_poulailler: Optional[str] = None
    poids_moyen: Optional[float] = None
    observations: Optional[str] = None
    événements: tuple[events.Event, ...] = field(default=(), repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "type_lot", _en_énumération(TypeLot, self.type_lot, "Type de lot")
        )
        object.__setattr__(
            self, "statut", _en_énumération(StatutLot, self.statut, "Statut de lot")
        )
        if not _renseigné(self.id):
            raise ErreurValidation("L'identifiant du lot est requis")
        if not _renseigné(self.id_organisation):
            raise ErreurValidation("L'identifiant de l'organisation est requis")
        if not _renseigné(self.nom):
            raise ErreurValidation("Le nom du lot est requis")
        if not _renseigné(self.race):
            raise ErreurValidation("La race est requise")
        vérifier_entier(self.quantité_initiale, "La quantité initiale")
        vérifier_entier(self.quantité_actuelle, "La quantité actuelle")
        if self.quantité_initiale <= 0:
            raise ErreurValidation("La quantité initiale doit être supérieure à 0")
        if self.quantité_actuelle < 0:
            raise ErreurValidation("La quantité actuelle ne peut pas être négative")
        if self.quantité_actuelle > self.quantité_initiale:
            raise ErreurValidation(
                "La quantité actuelle ne peut pas dépasser la quantité initiale"
            )
        if self.date_naissance > self.date_début:
            raise ErreurValidation(
                "La date de naissance ne peut pas être postérieure à la date de début"
            )
        if self.date_début > date.today():
            raise ErreurValidation("La date de début ne peut pas être dans le futur")

    def __repr__(self) -> str:
        return f"<Lot {self.id}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lot):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def nouveau(
        cls,
        id: str,
        id_organisation: str,
        type_lot: TypeLot,
        nom: str,
        race: str,
        date_début: date,
        date_naissance: date,
        quantité_initiale: int,
        créé_par: str,
        id_poulailler: Optional[str] = None,
        observations: Optional[str] = None,
    ) -> Lot:
        """Met en place un lot actif dont tout l'effectif initial est présent."""
        maintenant = datetime.now()
        return cls(
            id=id,
            id_organisation=id_organisation,
            type_lot=type_lot,
            nom=nom,
            race=race,
            date_début=date_début,
            date_naissance=date_naissance,
            quantité_initiale=quantité_initiale,
            quantité_actuelle=quantité_initiale,
            statut=StatutLot.ACTIF,
            créé_par=créé_par,
            créé_le=maintenant,
            modifié_le=maintenant,
            id_poulailler=id_poulailler,
            observations=observations,
            événements=(
                events.LotCréé(
                    id_lot=id,
                    id_organisation=id_organisation,
                    nom=nom,
                    type_lot=type_lot.value,
                    quantité_initiale=quantité_initiale,
                ),
            ),
        )

    # --- Indicateurs ---

    def âge_en_jours(self, aujourd_hui: Optional[date] = None) -> int:
        """Âge des sujets, compté depuis leur date de naissance."""
        aujourd_hui = aujourd_hui or date.today()
        return (aujourd_hui - self.date_naissance).days

    def pourcentage_mortalité(self) -> float:
        """
        Part de l'effectif initial qui n'est plus dans le lot.

        Les sorties par vente comptent aussi : l'indicateur mesure ce qui
        manque par rapport à la mise en place, pas seulement les pertes.
        """
        if self.quantité_initiale == 0:
            return 0.0
        pertes = self.quantité_initiale - self.quantité_actuelle
        return pertes / self.quantité_initiale * 100

    def pourcentage_survie(self) -> float:
        return 100 - self.pourcentage_mortalité()

    def est_opérationnel(self) -> bool:
        """Un lot est opérationnel s'il est actif et qu'il lui reste des sujets."""
        return self.statut is StatutLot.ACTIF and self.quantité_actuelle > 0

    def atteint_âge_minimum_vente(self, aujourd_hui: Optional[date] = None) -> bool:
        """
        Vérifie l'âge minimum de vente propre au type de lot.

        Les seuils sont dans ÂGE_MINIMUM_VENTE (4 mois pour les pondeuses).
        Un type sans seuil connu est toujours assez âgé.
        """
        seuil = ÂGE_MINIMUM_VENTE.get(self.type_lot)
        if seuil is None:
            return True
        return self.âge_en_jours(aujourd_hui) >= seuil

    def est_vendable(self, aujourd_hui: Optional[date] = None) -> bool:
        """Opérationnel et assez âgé : c'est la condition pour figurer sur une vente."""
        return self.est_opérationnel() and self.atteint_âge_minimum_vente(aujourd_hui)

    # --- Transitions ---

    def réduire_quantité(self, quantité: int, motif: MotifRéduction) -> Lot:
        """
        Retire `quantité` sujets du lot, suite à une vente ou à de la mortalité.

        Une vente qui vide le lot le fait passer au statut VENDU.
        Retourne la nouvelle version du lot ; l'appelant la persiste.
        """
        vérifier_entier(quantité, "La quantité à retirer")
        if quantité <= 0:
            raise ErreurDomaine("La quantité à retirer doit être supérieure à 0")
        if quantité > self.quantité_actuelle:
            raise ErreurDomaine(
                f"Impossible de retirer {quantité} unités du lot {self.nom} : "
                f"il n'en reste que {self.quantité_actuelle}"
            )
        if motif is MotifRéduction.VENTE and not self.est_opérationnel():
            raise ErreurDomaine(f"Impossible de vendre depuis le lot inactif {self.nom}")

        restante = self.quantité_actuelle - quantité
        statut = self.statut
        nouveaux: list[events.Event] = []
        if motif is MotifRéduction.VENTE and restante == 0:
            statut = StatutLot.VENDU
            nouveaux.append(
                events.LotÉpuisé(
                    id_lot=self.id, id_organisation=self.id_organisation, nom=self.nom
                )
            )
        elif motif is MotifRéduction.MORTALITÉ:
            nouveaux.append(
                events.MortalitéEnregistrée(
                    id_lot=self.id,
                    id_organisation=self.id_organisation,
                    quantité=quantité,
                    quantité_restante=restante,
                )
            )
        return self._transition(nouveaux, quantité_actuelle=restante, statut=statut)

    def mettre_à_jour_poids(self, poids: float) -> Lot:
        """
        Enregistre le poids moyen d'un sujet, en kilogrammes.

        Le poids est plafonné selon le type de lot (voir POIDS_MAXIMUM).
        """
        if poids <= 0:
            raise ErreurValidation("Le poids doit être supérieur à 0")
        maximum = POIDS_MAXIMUM.get(self.type_lot)
        if maximum is not None and poids > maximum:
            raise ErreurValidation(
                f"Poids trop élevé pour un lot {self.type_lot.value} "
                f"(maximum {maximum:g} kg)"
            )
        return self._transition(poids_moyen=poids)

    def terminer(self, observations: Optional[str] = None) -> Lot:
        """Clôt le lot ; les observations fournies remplacent les précédentes."""
        if self.statut is StatutLot.VENDU:
            raise ErreurDomaine(f"Le lot {self.nom} est déjà vendu")
        return self._transition(statut=StatutLot.TERMINÉ, observations=observations)

    def marquer_vendu(self) -> Lot:
        """Liquidation complète d'un lot actif, hors cas d'usage de vente."""
        if self.statut is not StatutLot.ACTIF:
            raise ErreurDomaine(
                f"Seul un lot actif peut être liquidé (statut : {self.statut.value})"
            )
        return self._transition(statut=StatutLot.VENDU)

    def avec_quantité(self, quantité: int) -> Lot:
        """Correction brute de l'effectif ; les bornes sont vérifiées à la construction."""
        return self._transition(quantité_actuelle=quantité)

    def _transition(self, nouveaux: Iterable[events.Event] = (), **changements) -> Lot:
        return replace(
            self,
            modifié_le=datetime.now(),
            événements=self.événements + tuple(nouveaux),
            **changements,
        )


# --- Agrégat Vente ---


@dataclass(frozen=True)
class Client:
    """Value Object : l'acheteur tel qu'il est figé sur la vente."""

    id: str
    nom: str
    document: Optional[str] = None
    téléphone: Optional[str] = None
    email: Optional[str] = None
    adresse: Optional[str] = None


@dataclass(frozen=True)
class LigneDeVente:
    """
    Value Object représentant une ligne de vente.

    La ligne référence un lot par son identifiant seulement : le lot
    est résolu via le repository au moment du cas d'usage.
    """

    id_produit: str
    id_lot: str
    type_produit: TypeProduit
    quantité: int
    prix_unitaire: float
    sous_total: float
    description: str = ""


@dataclass(frozen=True, eq=False)
class Vente:
    """
    Agrégat racine représentant une vente.

    Cycle de vie :
        EN_ATTENTE -> CONFIRMÉE -> LIVRÉE
        EN_ATTENTE | CONFIRMÉE -> ANNULÉE
    LIVRÉE et ANNULÉE sont terminaux.
    """

    id: str
    id_organisation: str
    numéro: str
    date: datetime
    client: Client
    lignes: tuple[LigneDeVente, ...]
    sous_total: float
    remise_totale: float
    total: float
    statut: StatutVente
    créé_par: str
    créé_le: datetime
    modifié_le: datetime
    observations: Optional[str] = None
    date_livraison: Optional[datetime] = None
    événements: tuple[events.Event, ...] = field(default=(), repr=False)

    def __post_init__(self) -> None:
        # Les lignes peuvent être fournies sous forme de liste
        object.__setattr__(self, "lignes", tuple(self.lignes or ()))
        object.__setattr__(
            self, "statut", _en_énumération(StatutVente, self.statut, "Statut de vente")
        )
        self._valider()

    def _valider(self) -> None:
        if not _renseigné(self.id):
            raise ErreurValidation("L'identifiant de la vente est requis")
        if not _renseigné(self.id_organisation):
            raise ErreurValidation("L'identifiant de l'organisation est requis")
        if not _renseigné(self.numéro):
            raise ErreurValidation("Le numéro de vente est requis")
        if not _renseigné(self.client.nom):
            raise ErreurValidation("Le nom du client est requis")
        if not self.lignes:
            raise ErreurValidation("La vente doit comporter au moins une ligne")
        if self.sous_total < 0:
            raise ErreurValidation("Le sous-total ne peut pas être négatif")
        if self.remise_totale < 0:
            raise ErreurValidation("La remise ne peut pas être négative")
        if self.total < 0:
            raise ErreurValidation("Le total ne peut pas être négatif")

        somme_lignes = sum(ligne.sous_total for ligne in self.lignes)
        if abs(somme_lignes - self.sous_total) > TOLÉRANCE:
            raise ErreurValidation(
                "Le sous-total ne correspond pas à la somme des lignes"
            )
        if abs(self.sous_total - self.remise_totale - self.total) > TOLÉRANCE:
            raise ErreurValidation("Le total ne correspond pas à sous-total - remise")

        for index, ligne in enumerate(self.lignes, start=1):
            if not _renseigné(ligne.id_lot):
                raise ErreurValidation(f"Ligne {index} : l'identifiant du lot est requis")
            vérifier_entier(ligne.quantité, f"Ligne {index} : la quantité")
            if ligne.quantité <= 0:
                raise ErreurValidation(
                    f"Ligne {index} : la quantité doit être supérieure à 0"
                )
            if ligne.prix_unitaire <= 0:
                raise ErreurValidation(
                    f"Ligne {index} : le prix unitaire doit être supérieur à 0"
                )
            if abs(ligne.quantité * ligne.prix_unitaire - ligne.sous_total) > TOLÉRANCE:
                raise ErreurValidation(
                    f"Ligne {index} : le sous-total ne correspond pas à quantité × prix"
                )

    def __repr__(self) -> str:
        return f"<Vente {self.numéro}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vente):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def nouvelle(
        cls,
        id: str,
        id_organisation: str,
        numéro: str,
        client: Client,
        lignes: Iterable[LigneDeVente],
        remise_totale: float,
        créé_par: str,
        observations: Optional[str] = None,
    ) -> Vente:
        """Crée une vente en attente dont les totaux sont calculés depuis les lignes."""
        lignes = tuple(lignes)
        sous_total = sum(ligne.sous_total for ligne in lignes)
        total = sous_total - remise_totale
        maintenant = datetime.now()
        return cls(
            id=id,
            id_organisation=id_organisation,
            numéro=numéro,
            date=maintenant,
            client=client,
            lignes=lignes,
            sous_total=sous_total,
            remise_totale=remise_totale,
            total=total,
            statut=StatutVente.EN_ATTENTE,
            créé_par=créé_par,
            créé_le=maintenant,
            modifié_le=maintenant,
            observations=observations,
            événements=(
                events.VenteCréée(
                    id_vente=id,
                    id_organisation=id_organisation,
                    numéro=numéro,
                    total=total,
                ),
            ),
        )

    # --- Transitions ---

    def confirmer(self) -> Vente:
        if self.statut is not StatutVente.EN_ATTENTE:
            raise ErreurDomaine("Seules les ventes en attente peuvent être confirmées")
        return self._transition(statut=StatutVente.CONFIRMÉE)

    def marquer_livrée(self, date_livraison: Optional[datetime] = None) -> Vente:
        if self.statut is not StatutVente.CONFIRMÉE:
            raise ErreurDomaine("Seules les ventes confirmées peuvent être livrées")
        return self._transition(
            [
                events.VenteLivrée(
                    id_vente=self.id,
                    id_organisation=self.id_organisation,
                    numéro=self.numéro,
                )
            ],
            statut=StatutVente.LIVRÉE,
            date_livraison=date_livraison or datetime.now(),
        )

    def annuler(self, motif: Optional[str] = None) -> Vente:
        """Annule la vente ; la mention d'annulation s'ajoute aux observations."""
        if self.statut is StatutVente.LIVRÉE:
            raise ErreurDomaine("Impossible d'annuler une vente déjà livrée")
        if self.statut is StatutVente.ANNULÉE:
            raise ErreurDomaine("La vente est déjà annulée")
        mention = f"Annulée : {motif}" if motif else "Annulée"
        return self._transition(
            [
                events.VenteAnnulée(
                    id_vente=self.id,
                    id_organisation=self.id_organisation,
                    numéro=self.numéro,
                    motif=motif,
                )
            ],
            statut=StatutVente.ANNULÉE,
            observations=_joindre_observations(self.observations, mention),
        )

    def ajouter_observations(self, texte: str) -> Vente:
        return self._transition(
            observations=_joindre_observations(self.observations, texte)
        )

    # --- Consultation ---

    def total_unités(self) -> int:
        return sum(ligne.quantité for ligne in self.lignes)

    def lots_concernés(self) -> list[str]:
        """Identifiants des lots de la vente, sans doublon, dans l'ordre des lignes."""
        return list(dict.fromkeys(ligne.id_lot for ligne in self.lignes))

    def concerne_lot(self, id_lot: str) -> bool:
        return any(ligne.id_lot == id_lot for ligne in self.lignes)

    def ligne_pour_lot(self, id_lot: str) -> Optional[LigneDeVente]:
        return next((ligne for ligne in self.lignes if ligne.id_lot == id_lot), None)

    def pourcentage_remise(self) -> float:
        if self.sous_total <= 0:
            return 0.0
        return self.remise_totale / self.sous_total * 100

    def est_modifiable(self) -> bool:
        return self.statut in (StatutVente.EN_ATTENTE, StatutVente.CONFIRMÉE)

    def est_annulable(self) -> bool:
        return self.statut not in (StatutVente.LIVRÉE, StatutVente.ANNULÉE)

    def _transition(self, nouveaux: Iterable[events.Event] = (), **changements) -> Vente:
        return replace(
            self,
            modifié_le=datetime.now(),
            événements=self.événements + tuple(nouveaux),
            **changements,
        )
