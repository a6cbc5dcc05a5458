"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance.
Il expose une interface de type collection (add, get, update, delete)
qui masque les détails de l'accès aux données. Toutes les opérations
sont cantonnées à une organisation (id_organisation).

Les noms de méthodes du pattern (add, get, update, delete) restent en
anglais car ce sont des conventions reconnues. Les requêtes spécifiques
au domaine (lister_vendables, prochain_numéro...) sont en français.
"""

from __future__ import annotations

import abc
import calendar
from datetime import date, datetime, time, timedelta
from typing import Any, Generic, Optional, TypeVar, Union

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session

from elevage import config
from elevage.adapters import orm
from elevage.adapters.abonnements import Abonnement, Diffuseur
from elevage.domain import events, model

E = TypeVar("E", model.Lot, model.Vente)


class IdentifiantDéjàUtilisé(Exception):
    """Levée par add() quand l'identifiant généré existe déjà en base."""
    pass


class AbstractRepository(abc.ABC, Generic[E]):
    """
    Socle commun des repositories d'agrégats.

    Le pattern Template Method est utilisé : les méthodes publiques
    (add, get, update, delete) gèrent les vérifications et le suivi des
    écritures, puis délèguent aux méthodes abstraites préfixées _.

    Le suivi sert deux consommateurs une fois la transaction validée :
    le Unit of Work (events émis par les agrégats écrits) et les
    abonnés (instantanés des organisations et agrégats modifiés).
    """

    # Préfixe des clés d'abonnement ("lots", "ventes")
    flux: str

    def __init__(self, diffuseur: Optional[Diffuseur] = None) -> None:
        self.diffuseur = diffuseur or Diffuseur()
        self.événements: list[events.Event] = []
        self._événements_en_attente: list[events.Event] = []
        self._modifiés: set[tuple[str, str]] = set()

    def add(self, entité: E) -> None:
        """Ajoute un nouvel agrégat ; l'identifiant doit être libre."""
        if self._existe(entité.id):
            raise IdentifiantDéjàUtilisé(entité.id)
        self._add(entité)
        self._suivre(entité)

    def get(self, id: str, id_organisation: str) -> Optional[E]:
        return self._get(id, id_organisation)

    def update(self, entité: E) -> None:
        """Remplace la version stockée par la nouvelle version de l'agrégat."""
        self._exiger(entité.id, entité.id_organisation)
        self._update(entité)
        self._suivre(entité)

    def delete(self, id: str, id_organisation: str) -> None:
        self._exiger(id, id_organisation)
        self._delete(id, id_organisation)
        self._modifiés.add((id_organisation, id))

    # --- Abonnements ---

    def abonner(self, id_organisation: str) -> Abonnement:
        """Flux des instantanés de tous les agrégats de l'organisation."""
        abonnement = self.diffuseur.ouvrir((self.flux, id_organisation))
        abonnement.pousser(tuple(self.lister_par_organisation(id_organisation)))
        return abonnement

    def abonner_un(self, id: str, id_organisation: str) -> Abonnement:
        """Flux des versions successives d'un agrégat (None une fois supprimé)."""
        abonnement = self.diffuseur.ouvrir((self.flux, id_organisation, id))
        abonnement.pousser(self.get(id, id_organisation))
        return abonnement

    def publier(self) -> None:
        """
        Appelé par le Unit of Work après un commit réussi.

        Rend disponibles les events des écritures validées et pousse un
        instantané frais vers chaque abonné concerné.
        """
        self.événements.extend(self._événements_en_attente)
        self._événements_en_attente.clear()
        modifiés, self._modifiés = self._modifiés, set()
        for id_organisation in {org for org, _ in modifiés}:
            clé = (self.flux, id_organisation)
            if self.diffuseur.écouté(clé):
                self.diffuseur.diffuser(
                    clé, tuple(self.lister_par_organisation(id_organisation))
                )
        for id_organisation, id in modifiés:
            clé = (self.flux, id_organisation, id)
            if self.diffuseur.écouté(clé):
                self.diffuseur.diffuser(clé, self.get(id, id_organisation))

    def abandonner(self) -> None:
        """Appelé au rollback : les écritures non validées ne sont ni publiées ni notifiées."""
        self._événements_en_attente.clear()
        self._modifiés.clear()

    @abc.abstractmethod
    def lister_par_organisation(self, id_organisation: str) -> list[E]:
        raise NotImplementedError

    def _suivre(self, entité: E) -> None:
        self._événements_en_attente.extend(entité.événements)
        self._modifiés.add((entité.id_organisation, entité.id))

    def _exiger(self, id: str, id_organisation: str) -> E:
        entité = self._get(id, id_organisation)
        if entité is None:
            raise model.ErreurIntrouvable(
                f"{self.flux} : {id} introuvable dans l'organisation {id_organisation}"
            )
        return entité

    @abc.abstractmethod
    def _existe(self, id: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def _add(self, entité: E) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, id: str, id_organisation: str) -> Optional[E]:
        raise NotImplementedError

    @abc.abstractmethod
    def _update(self, entité: E) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _delete(self, id: str, id_organisation: str) -> None:
        raise NotImplementedError


class AbstractLotRepository(AbstractRepository[model.Lot]):
    """
    Contrat de persistance des lots.

    Les sous-classes n'implémentent qu'une requête filtrée (_lister) et
    un comptage (_compter) ; les requêtes métier sont construites dessus.
    Les listes sont triées par date de début décroissante.
    """

    flux = "lots"

    def lister_par_organisation(self, id_organisation: str) -> list[model.Lot]:
        return self._lister(id_organisation)

    def lister_par_type(
        self, id_organisation: str, type_lot: model.TypeLot
    ) -> list[model.Lot]:
        return self._lister(id_organisation, type_lot=type_lot)

    def lister_par_statut(
        self, id_organisation: str, statut: model.StatutLot
    ) -> list[model.Lot]:
        return self._lister(id_organisation, statut=statut)

    def lister_actifs(self, id_organisation: str) -> list[model.Lot]:
        return self.lister_par_statut(id_organisation, model.StatutLot.ACTIF)

    def lister_par_poulailler(
        self, id_organisation: str, id_poulailler: str
    ) -> list[model.Lot]:
        return self._lister(id_organisation, id_poulailler=id_poulailler)

    def lister_par_période(
        self, id_organisation: str, début: date, fin: date
    ) -> list[model.Lot]:
        """Lots dont la date de début est comprise entre `début` et `fin` inclus."""
        return self._lister(id_organisation, début=début, fin=fin)

    def lister_vendables(
        self, id_organisation: str, aujourd_hui: Optional[date] = None
    ) -> list[model.Lot]:
        return [
            lot for lot in self.lister_actifs(id_organisation)
            if lot.est_vendable(aujourd_hui)
        ]

    def compter(self, id_organisation: str) -> int:
        return self._compter(id_organisation)

    def compter_par_type(self, id_organisation: str, type_lot: model.TypeLot) -> int:
        return self._compter(id_organisation, type_lot=type_lot)

    def modifier_quantité(self, id: str, id_organisation: str, quantité: int) -> model.Lot:
        """Corrige l'effectif d'un lot ; les bornes sont celles de l'entité."""
        lot = self._exiger(id, id_organisation).avec_quantité(quantité)
        self.update(lot)
        return lot

    def marquer_vendu(self, id: str, id_organisation: str) -> model.Lot:
        lot = self._exiger(id, id_organisation).marquer_vendu()
        self.update(lot)
        return lot

    @abc.abstractmethod
    def _lister(
        self,
        id_organisation: str,
        type_lot: Optional[model.TypeLot] = None,
        statut: Optional[model.StatutLot] = None,
        id_poulailler: Optional[str] = None,
        début: Optional[date] = None,
        fin: Optional[date] = None,
    ) -> list[model.Lot]:
        raise NotImplementedError

    @abc.abstractmethod
    def _compter(
        self, id_organisation: str, type_lot: Optional[model.TypeLot] = None
    ) -> int:
        raise NotImplementedError


class AbstractVenteRepository(AbstractRepository[model.Vente]):
    """
    Contrat de persistance des ventes.

    En plus des requêtes, le repository attribue les numéros de vente :
    un compteur par organisation, strictement croissant.
    Les listes sont triées par date décroissante.
    """

    flux = "ventes"

    def __init__(
        self, diffuseur: Optional[Diffuseur] = None, préfixe: Optional[str] = None
    ) -> None:
        super().__init__(diffuseur)
        self.préfixe = préfixe or config.get_préfixe_vente()

    def lister_par_organisation(self, id_organisation: str) -> list[model.Vente]:
        return self._lister(id_organisation)

    def lister_par_statut(
        self, id_organisation: str, statut: model.StatutVente
    ) -> list[model.Vente]:
        return self._lister(id_organisation, statut=statut)

    def lister_par_client(self, id_organisation: str, id_client: str) -> list[model.Vente]:
        return self._lister(id_organisation, id_client=id_client)

    def lister_par_période(
        self,
        id_organisation: str,
        début: Union[date, datetime],
        fin: Union[date, datetime],
    ) -> list[model.Vente]:
        """Ventes datées entre `début` et `fin` inclus (une date couvre toute la journée)."""
        return self._lister(
            id_organisation, début=_début_de(début), fin=_fin_de(fin)
        )

    def lister_par_mois(self, id_organisation: str, année: int, mois: int) -> list[model.Vente]:
        dernier_jour = calendar.monthrange(année, mois)[1]
        return self.lister_par_période(
            id_organisation, date(année, mois, 1), date(année, mois, dernier_jour)
        )

    def lister_par_lot(self, id_organisation: str, id_lot: str) -> list[model.Vente]:
        return [
            vente for vente in self.lister_par_organisation(id_organisation)
            if vente.concerne_lot(id_lot)
        ]

    def lister_en_attente(self, id_organisation: str) -> list[model.Vente]:
        return self.lister_par_statut(id_organisation, model.StatutVente.EN_ATTENTE)

    def lister_à_livrer(self, id_organisation: str) -> list[model.Vente]:
        return self.lister_par_statut(id_organisation, model.StatutVente.CONFIRMÉE)

    def compter(self, id_organisation: str) -> int:
        return self._compter(id_organisation)

    def total_ventes(self, id_organisation: str) -> float:
        """Chiffre d'affaires de l'organisation, ventes annulées exclues."""
        return _chiffre_affaires(self.lister_par_organisation(id_organisation))

    def total_ventes_du_mois(self, id_organisation: str, année: int, mois: int) -> float:
        return _chiffre_affaires(self.lister_par_mois(id_organisation, année, mois))

    def prochain_numéro(self, id_organisation: str) -> str:
        """Réserve le numéro suivant de l'organisation (ex. VTE-0042)."""
        numéro = self._incrémenter_compteur(id_organisation)
        return f"{self.préfixe}-{numéro:04d}"

    @abc.abstractmethod
    def _lister(
        self,
        id_organisation: str,
        statut: Optional[model.StatutVente] = None,
        id_client: Optional[str] = None,
        début: Optional[datetime] = None,
        fin: Optional[datetime] = None,
    ) -> list[model.Vente]:
        raise NotImplementedError

    @abc.abstractmethod
    def _compter(self, id_organisation: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def _incrémenter_compteur(self, id_organisation: str) -> int:
        raise NotImplementedError


def _début_de(moment: Union[date, datetime]) -> datetime:
    if isinstance(moment, datetime):
        return moment
    return datetime.combine(moment, time.min)


def _fin_de(moment: Union[date, datetime]) -> datetime:
    if isinstance(moment, datetime):
        return moment
    return datetime.combine(moment + timedelta(days=1), time.min) - timedelta(microseconds=1)


def _chiffre_affaires(ventes: list[model.Vente]) -> float:
    return sum(
        vente.total for vente in ventes
        if vente.statut is not model.StatutVente.ANNULÉE
    )


# --- Implémentations SQLAlchemy ---


def _lot_vers_ligne(lot: model.Lot) -> dict[str, Any]:
    return dict(
        id=lot.id,
        id_organisation=lot.id_organisation,
        type_lot=lot.type_lot.value,
        nom=lot.nom,
        race=lot.race,
        date_debut=lot.date_début,
        date_naissance=lot.date_naissance,
        quantite_initiale=lot.quantité_initiale,
        quantite_actuelle=lot.quantité_actuelle,
        statut=lot.statut.value,
        id_poulailler=lot.id_poulailler,
        poids_moyen=lot.poids_moyen,
        observations=lot.observations,
        cree_par=lot.créé_par,
        cree_le=lot.créé_le,
        modifie_le=lot.modifié_le,
    )


def _lot_depuis_ligne(ligne: Any) -> model.Lot:
    return model.Lot(
        id=ligne["id"],
        id_organisation=ligne["id_organisation"],
        type_lot=model.TypeLot(ligne["type_lot"]),
        nom=ligne["nom"],
        race=ligne["race"],
        date_début=ligne["date_debut"],
        date_naissance=ligne["date_naissance"],
        quantité_initiale=ligne["quantite_initiale"],
        quantité_actuelle=ligne["quantite_actuelle"],
        statut=model.StatutLot(ligne["statut"]),
        créé_par=ligne["cree_par"],
        créé_le=ligne["cree_le"],
        modifié_le=ligne["modifie_le"],
        id_poulailler=ligne["id_poulailler"],
        poids_moyen=ligne["poids_moyen"],
        observations=ligne["observations"],
    )


class SqlAlchemyLotRepository(AbstractLotRepository):
    """Implémentation concrète du repository de lots avec SQLAlchemy."""

    def __init__(self, session: Session, diffuseur: Optional[Diffuseur] = None):
        super().__init__(diffuseur)
        self.session = session

    def _existe(self, id: str) -> bool:
        requête = select(orm.lots.c.id).where(orm.lots.c.id == id)
        return self.session.execute(requête).first() is not None

    def _add(self, lot: model.Lot) -> None:
        self.session.execute(insert(orm.lots).values(**_lot_vers_ligne(lot)))

    def _get(self, id: str, id_organisation: str) -> Optional[model.Lot]:
        requête = select(orm.lots).where(
            orm.lots.c.id == id,
            orm.lots.c.id_organisation == id_organisation,
        )
        ligne = self.session.execute(requête).mappings().first()
        return _lot_depuis_ligne(ligne) if ligne else None

    def _update(self, lot: model.Lot) -> None:
        self.session.execute(
            update(orm.lots)
            .where(
                orm.lots.c.id == lot.id,
                orm.lots.c.id_organisation == lot.id_organisation,
            )
            .values(**_lot_vers_ligne(lot))
        )

    def _delete(self, id: str, id_organisation: str) -> None:
        self.session.execute(
            delete(orm.lots).where(
                orm.lots.c.id == id,
                orm.lots.c.id_organisation == id_organisation,
            )
        )

    def _lister(
        self,
        id_organisation: str,
        type_lot: Optional[model.TypeLot] = None,
        statut: Optional[model.StatutLot] = None,
        id_poulailler: Optional[str] = None,
        début: Optional[date] = None,
        fin: Optional[date] = None,
    ) -> list[model.Lot]:
        colonnes = orm.lots.c
        requête = select(orm.lots).where(colonnes.id_organisation == id_organisation)
        if type_lot is not None:
            requête = requête.where(colonnes.type_lot == type_lot.value)
        if statut is not None:
            requête = requête.where(colonnes.statut == statut.value)
        if id_poulailler is not None:
            requête = requête.where(colonnes.id_poulailler == id_poulailler)
        if début is not None:
            requête = requête.where(colonnes.date_debut >= début)
        if fin is not None:
            requête = requête.where(colonnes.date_debut <= fin)
        requête = requête.order_by(colonnes.date_debut.desc())
        return [
            _lot_depuis_ligne(ligne)
            for ligne in self.session.execute(requête).mappings()
        ]

    def _compter(
        self, id_organisation: str, type_lot: Optional[model.TypeLot] = None
    ) -> int:
        requête = (
            select(func.count())
            .select_from(orm.lots)
            .where(orm.lots.c.id_organisation == id_organisation)
        )
        if type_lot is not None:
            requête = requête.where(orm.lots.c.type_lot == type_lot.value)
        return self.session.execute(requête).scalar_one()


def _vente_vers_ligne(vente: model.Vente) -> dict[str, Any]:
    return dict(
        id=vente.id,
        id_organisation=vente.id_organisation,
        numero=vente.numéro,
        date=vente.date,
        client_id=vente.client.id,
        client_nom=vente.client.nom,
        client_document=vente.client.document,
        client_telephone=vente.client.téléphone,
        client_email=vente.client.email,
        client_adresse=vente.client.adresse,
        sous_total=vente.sous_total,
        remise_totale=vente.remise_totale,
        total=vente.total,
        statut=vente.statut.value,
        observations=vente.observations,
        date_livraison=vente.date_livraison,
        cree_par=vente.créé_par,
        cree_le=vente.créé_le,
        modifie_le=vente.modifié_le,
    )


def _vente_depuis_ligne(ligne: Any, lignes: list[model.LigneDeVente]) -> model.Vente:
    return model.Vente(
        id=ligne["id"],
        id_organisation=ligne["id_organisation"],
        numéro=ligne["numero"],
        date=ligne["date"],
        client=model.Client(
            id=ligne["client_id"],
            nom=ligne["client_nom"],
            document=ligne["client_document"],
            téléphone=ligne["client_telephone"],
            email=ligne["client_email"],
            adresse=ligne["client_adresse"],
        ),
        lignes=lignes,
        sous_total=ligne["sous_total"],
        remise_totale=ligne["remise_totale"],
        total=ligne["total"],
        statut=model.StatutVente(ligne["statut"]),
        créé_par=ligne["cree_par"],
        créé_le=ligne["cree_le"],
        modifié_le=ligne["modifie_le"],
        observations=ligne["observations"],
        date_livraison=ligne["date_livraison"],
    )


def _ligne_de_vente_depuis_ligne(ligne: Any) -> model.LigneDeVente:
    return model.LigneDeVente(
        id_produit=ligne["id_produit"],
        id_lot=ligne["id_lot"],
        type_produit=model.TypeProduit(ligne["type_produit"]),
        quantité=ligne["quantite"],
        prix_unitaire=ligne["prix_unitaire"],
        sous_total=ligne["sous_total"],
        description=ligne["description"],
    )


class SqlAlchemyVenteRepository(AbstractVenteRepository):
    """
    Implémentation concrète du repository de ventes avec SQLAlchemy.

    L'en-tête est stocké dans `ventes`, les lignes dans `lignes_vente`
    (ordonnées par position). Les lignes d'une vente ne changent plus
    après sa création : update() ne réécrit que l'en-tête.
    """

    def __init__(
        self,
        session: Session,
        diffuseur: Optional[Diffuseur] = None,
        préfixe: Optional[str] = None,
    ):
        super().__init__(diffuseur, préfixe)
        self.session = session

    def _existe(self, id: str) -> bool:
        requête = select(orm.ventes.c.id).where(orm.ventes.c.id == id)
        return self.session.execute(requête).first() is not None

    def _add(self, vente: model.Vente) -> None:
        self.session.execute(insert(orm.ventes).values(**_vente_vers_ligne(vente)))
        for position, ligne in enumerate(vente.lignes):
            self.session.execute(
                insert(orm.lignes_vente).values(
                    vente_id=vente.id,
                    position=position,
                    id_produit=ligne.id_produit,
                    id_lot=ligne.id_lot,
                    type_produit=ligne.type_produit.value,
                    quantite=ligne.quantité,
                    prix_unitaire=ligne.prix_unitaire,
                    sous_total=ligne.sous_total,
                    description=ligne.description,
                )
            )

    def _get(self, id: str, id_organisation: str) -> Optional[model.Vente]:
        requête = select(orm.ventes).where(
            orm.ventes.c.id == id,
            orm.ventes.c.id_organisation == id_organisation,
        )
        ligne = self.session.execute(requête).mappings().first()
        if ligne is None:
            return None
        return _vente_depuis_ligne(ligne, self._charger_lignes([id])[id])

    def _update(self, vente: model.Vente) -> None:
        self.session.execute(
            update(orm.ventes)
            .where(
                orm.ventes.c.id == vente.id,
                orm.ventes.c.id_organisation == vente.id_organisation,
            )
            .values(**_vente_vers_ligne(vente))
        )

    def _delete(self, id: str, id_organisation: str) -> None:
        self.session.execute(delete(orm.lignes_vente).where(orm.lignes_vente.c.vente_id == id))
        self.session.execute(
            delete(orm.ventes).where(
                orm.ventes.c.id == id,
                orm.ventes.c.id_organisation == id_organisation,
            )
        )

    def _lister(
        self,
        id_organisation: str,
        statut: Optional[model.StatutVente] = None,
        id_client: Optional[str] = None,
        début: Optional[datetime] = None,
        fin: Optional[datetime] = None,
    ) -> list[model.Vente]:
        colonnes = orm.ventes.c
        requête = select(orm.ventes).where(colonnes.id_organisation == id_organisation)
        if statut is not None:
            requête = requête.where(colonnes.statut == statut.value)
        if id_client is not None:
            requête = requête.where(colonnes.client_id == id_client)
        if début is not None:
            requête = requête.where(colonnes.date >= début)
        if fin is not None:
            requête = requête.where(colonnes.date <= fin)
        requête = requête.order_by(colonnes.date.desc())
        en_têtes = self.session.execute(requête).mappings().all()
        lignes = self._charger_lignes([en_tête["id"] for en_tête in en_têtes])
        return [
            _vente_depuis_ligne(en_tête, lignes[en_tête["id"]]) for en_tête in en_têtes
        ]

    def _compter(self, id_organisation: str) -> int:
        requête = (
            select(func.count())
            .select_from(orm.ventes)
            .where(orm.ventes.c.id_organisation == id_organisation)
        )
        return self.session.execute(requête).scalar_one()

    def _incrémenter_compteur(self, id_organisation: str) -> int:
        """
        Incrémente le compteur en une seule instruction (UPDATE ... RETURNING).

        La lecture et l'écriture ne sont jamais séparées : une transaction
        concurrente attend le verrou d'écriture puis lit la valeur déjà
        incrémentée. Le premier numéro d'une organisation crée le compteur ;
        deux créations simultanées butent sur la clé primaire.
        """
        compteurs = orm.compteurs_ventes
        incrémenté = self.session.execute(
            update(compteurs)
            .where(compteurs.c.id_organisation == id_organisation)
            .values(prochain_numero=compteurs.c.prochain_numero + 1)
            .returning(compteurs.c.prochain_numero)
        ).scalar_one_or_none()
        if incrémenté is not None:
            return incrémenté - 1
        self.session.execute(
            insert(compteurs).values(id_organisation=id_organisation, prochain_numero=2)
        )
        return 1

    def _charger_lignes(self, ids_ventes: list[str]) -> dict[str, list[model.LigneDeVente]]:
        lignes: dict[str, list[model.LigneDeVente]] = {id: [] for id in ids_ventes}
        if not ids_ventes:
            return lignes
        requête = (
            select(orm.lignes_vente)
            .where(orm.lignes_vente.c.vente_id.in_(ids_ventes))
            .order_by(orm.lignes_vente.c.vente_id, orm.lignes_vente.c.position)
        )
        for ligne in self.session.execute(requête).mappings():
            lignes[ligne["vente_id"]].append(_ligne_de_vente_depuis_ligne(ligne))
        return lignes
