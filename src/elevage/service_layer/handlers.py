"""
Handlers pour les commands et events.

Les handlers sont les fonctions qui traitent les commands et events
transitant par le message bus.

- Command handlers : les cas d'usage (peuvent échouer, l'erreur remonte)
- Event handlers : réagissent à un fait passé (ne doivent pas échouer)
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date
from typing import TYPE_CHECKING, Callable, TypeVar

from elevage import config
from elevage.adapters.repository import AbstractRepository, IdentifiantDéjàUtilisé
from elevage.domain import commands, events, model

if TYPE_CHECKING:
    from elevage.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

E = TypeVar("E", model.Lot, model.Vente)

# Effectifs admis à la mise en place, par type de lot
LIMITES_QUANTITÉ: dict[model.TypeLot, tuple[int, int]] = {
    model.TypeLot.PONTE: (50, 50_000),
    model.TypeLot.ÉLEVAGE: (25, 25_000),
    model.TypeLot.ENGRAISSEMENT: (100, 100_000),
}

RACES_RECOMMANDÉES: dict[model.TypeLot, tuple[str, ...]] = {
    model.TypeLot.PONTE: ("Hy-Line Brown", "Lohmann Brown", "ISA Brown", "Rhode Island Red"),
    model.TypeLot.ÉLEVAGE: ("Broiler", "Cobb 500", "Ross 308", "Hubbard"),
    model.TypeLot.ENGRAISSEMENT: ("Cobb 500", "Ross 308", "Hubbard", "Arbor Acres"),
}

TENTATIVES_IDENTIFIANT = 3


# --- Command Handlers : lots ---


def créer_lot(
    cmd: commands.CréerLot,
    uow: AbstractUnitOfWork,
) -> model.Lot:
    """
    Met en place un nouveau lot actif.

    Lève ErreurConflit si un lot actif porte déjà ce nom dans
    l'organisation, ErreurValidation si les dates ou l'effectif sont
    hors limites. Une race hors recommandations n'est qu'un avertissement.
    """
    with uow:
        _vérifier_nom_disponible(cmd.id_organisation, cmd.nom, uow)
        _vérifier_dates(cmd.date_naissance, cmd.date_début)
        _vérifier_effectif(cmd.type_lot, cmd.quantité_initiale)
        _signaler_race_inhabituelle(cmd.type_lot, cmd.race)

        lot = _ajouter_avec_identifiant(
            uow.lots,
            "lot",
            lambda id: model.Lot.nouveau(
                id=id,
                id_organisation=cmd.id_organisation,
                type_lot=cmd.type_lot,
                nom=cmd.nom,
                race=cmd.race,
                date_début=cmd.date_début,
                date_naissance=cmd.date_naissance,
                quantité_initiale=cmd.quantité_initiale,
                créé_par=cmd.créé_par,
                id_poulailler=cmd.id_poulailler,
                observations=cmd.observations,
            ),
        )
        uow.commit()
    return lot


def enregistrer_mortalité(
    cmd: commands.EnregistrerMortalité,
    uow: AbstractUnitOfWork,
) -> model.Lot:
    """Retire du lot les sujets morts ; la surveillance du taux suit via l'event."""
    with uow:
        lot = _lot_existant(cmd.id_lot, cmd.id_organisation, uow)
        lot = lot.réduire_quantité(cmd.quantité, model.MotifRéduction.MORTALITÉ)
        uow.lots.update(lot)
        uow.commit()
    return lot


def mettre_à_jour_poids(
    cmd: commands.MettreÀJourPoids,
    uow: AbstractUnitOfWork,
) -> model.Lot:
    """Enregistre une pesée moyenne du lot."""
    with uow:
        lot = _lot_existant(cmd.id_lot, cmd.id_organisation, uow)
        lot = lot.mettre_à_jour_poids(cmd.poids)
        uow.lots.update(lot)
        uow.commit()
    return lot


def terminer_lot(
    cmd: commands.TerminerLot,
    uow: AbstractUnitOfWork,
) -> model.Lot:
    """
    Clôt un lot en fin de cycle.

    Un lot déjà vendu ne peut plus être terminé (ErreurDomaine).
    """
    with uow:
        lot = _lot_existant(cmd.id_lot, cmd.id_organisation, uow)
        lot = lot.terminer(cmd.observations)
        uow.lots.update(lot)
        uow.commit()
    return lot


def liquider_lot(
    cmd: commands.LiquiderLot,
    uow: AbstractUnitOfWork,
) -> model.Lot:
    """
    Marque un lot actif comme entièrement vendu, sans passer par une vente.

    Sert aux cessions hors système ; aucun document de vente n'est créé.
    """
    with uow:
        lot = uow.lots.marquer_vendu(cmd.id_lot, cmd.id_organisation)
        uow.commit()
    return lot


# --- Command Handlers : ventes ---


def créer_vente(
    cmd: commands.CréerVente,
    uow: AbstractUnitOfWork,
) -> model.Vente:
    """
    Enregistre une vente puis sort du stock les quantités vendues.

    Les deux écritures ne sont pas atomiques : la vente est validée
    d'abord, puis chaque lot est relu et décrémenté dans sa propre
    transaction. Si un décrément échoue, la vente reste enregistrée
    en attente avec un stock non décrémenté ; l'erreur est journalisée
    puis remonte à l'appelant, sans compensation.
    """
    _vérifier_saisie_vente(cmd)
    with uow:
        lots = _vérifier_disponibilité(cmd, uow)

        sous_total_brut = sum(ligne.quantité * ligne.prix_unitaire for ligne in cmd.lignes)
        if cmd.remise_totale > sous_total_brut:
            raise model.ErreurValidation("La remise ne peut pas dépasser le sous-total")

        numéro = uow.ventes.prochain_numéro(cmd.id_organisation)
        lignes = [_construire_ligne(ligne, lots[ligne.id_lot]) for ligne in cmd.lignes]
        vente = _ajouter_avec_identifiant(
            uow.ventes,
            "vente",
            lambda id: model.Vente.nouvelle(
                id=id,
                id_organisation=cmd.id_organisation,
                numéro=numéro,
                client=cmd.client,
                lignes=lignes,
                remise_totale=cmd.remise_totale,
                créé_par=cmd.créé_par,
                observations=cmd.observations,
            ),
        )
        uow.commit()

        _sortir_du_stock(vente, uow)
    return vente


def confirmer_vente(
    cmd: commands.ConfirmerVente,
    uow: AbstractUnitOfWork,
) -> model.Vente:
    """Valide une vente en attente."""
    with uow:
        vente = _vente_existante(cmd.id_vente, cmd.id_organisation, uow).confirmer()
        uow.ventes.update(vente)
        uow.commit()
    return vente


def livrer_vente(
    cmd: commands.LivrerVente,
    uow: AbstractUnitOfWork,
) -> model.Vente:
    """Marque une vente confirmée comme livrée, à la date fournie ou maintenant."""
    with uow:
        vente = _vente_existante(cmd.id_vente, cmd.id_organisation, uow)
        vente = vente.marquer_livrée(cmd.date_livraison)
        uow.ventes.update(vente)
        uow.commit()
    return vente


def annuler_vente(
    cmd: commands.AnnulerVente,
    uow: AbstractUnitOfWork,
) -> model.Vente:
    """
    Annule une vente non livrée.

    Le stock des lots n'est pas restitué : l'event VenteAnnulée
    déclenche un avertissement listant les lots concernés.
    """
    with uow:
        vente = _vente_existante(cmd.id_vente, cmd.id_organisation, uow).annuler(cmd.motif)
        uow.ventes.update(vente)
        uow.commit()
    return vente


# --- Règles de gestion ---


def _vérifier_nom_disponible(id_organisation: str, nom: str, uow: AbstractUnitOfWork) -> None:
    nom_normalisé = nom.lower()
    for lot in uow.lots.lister_par_organisation(id_organisation):
        if lot.statut is model.StatutLot.ACTIF and lot.nom.lower() == nom_normalisé:
            raise model.ErreurConflit(f'Un lot actif nommé "{nom}" existe déjà')


def _vérifier_dates(date_naissance: date, date_début: date) -> None:
    if date_naissance > date_début:
        raise model.ErreurValidation(
            "La date de naissance ne peut pas être postérieure à la date de début"
        )
    if date_début > date.today():
        raise model.ErreurValidation("La date de début ne peut pas être dans le futur")


def _vérifier_effectif(type_lot: model.TypeLot, quantité: int) -> None:
    model.vérifier_entier(quantité, "La quantité initiale")
    minimum, maximum = LIMITES_QUANTITÉ[type_lot]
    if not minimum <= quantité <= maximum:
        raise model.ErreurValidation(
            f"L'effectif d'un lot {type_lot.value} doit être compris "
            f"entre {minimum} et {maximum}"
        )


def _signaler_race_inhabituelle(type_lot: model.TypeLot, race: str) -> None:
    if race not in RACES_RECOMMANDÉES[type_lot]:
        logger.warning(
            'Race "%s" absente des recommandations pour un lot %s', race, type_lot.value
        )


def _vérifier_saisie_vente(cmd: commands.CréerVente) -> None:
    if not cmd.lignes:
        raise model.ErreurValidation("La vente doit comporter au moins une ligne")
    if not cmd.client.nom or not cmd.client.nom.strip():
        raise model.ErreurValidation("Le nom du client est requis")
    for index, ligne in enumerate(cmd.lignes, start=1):
        model.vérifier_entier(ligne.quantité, f"Ligne {index} : la quantité")
    if cmd.remise_totale < 0:
        raise model.ErreurValidation("La remise ne peut pas être négative")


def _vérifier_disponibilité(
    cmd: commands.CréerVente, uow: AbstractUnitOfWork
) -> dict[str, model.Lot]:
    """
    Vérifie chaque ligne contre son lot et retourne les lots lus.

    Les quantités demandées sur un même lot sont cumulées d'une ligne
    à l'autre avant d'être comparées au stock.
    """
    lots: dict[str, model.Lot] = {}
    demandé: Counter[str] = Counter()
    for ligne in cmd.lignes:
        lot = lots.get(ligne.id_lot) or uow.lots.get(ligne.id_lot, cmd.id_organisation)
        if lot is None:
            raise model.ErreurIntrouvable(f"Lot {ligne.id_lot} introuvable")
        if not lot.est_vendable():
            raise model.ErreurDomaine(
                f"Le lot {lot.nom} ne peut pas être vendu dans son état actuel"
            )
        demandé[lot.id] += ligne.quantité
        if demandé[lot.id] > lot.quantité_actuelle:
            raise model.ErreurDomaine(
                f"Stock insuffisant dans le lot {lot.nom} : "
                f"disponible {lot.quantité_actuelle}, demandé {demandé[lot.id]}"
            )
        if ligne.prix_unitaire <= 0:
            raise model.ErreurValidation(
                f"Le prix unitaire doit être supérieur à 0 pour le lot {lot.nom}"
            )
        lots[lot.id] = lot
    return lots


def _construire_ligne(ligne: commands.LigneDemandée, lot: model.Lot) -> model.LigneDeVente:
    type_produit = model.TypeProduit(ligne.type_produit)
    return model.LigneDeVente(
        id_produit=f"{type_produit.value.lower()}-{ligne.id_lot}",
        id_lot=ligne.id_lot,
        type_produit=type_produit,
        quantité=ligne.quantité,
        prix_unitaire=ligne.prix_unitaire,
        sous_total=ligne.quantité * ligne.prix_unitaire,
        description=ligne.description or f"{lot.nom} - {lot.race}",
    )


def _sortir_du_stock(vente: model.Vente, uow: AbstractUnitOfWork) -> None:
    # Chaque lot est relu : l'état lu pendant la vérification peut être périmé
    for ligne in vente.lignes:
        try:
            lot = _lot_existant(ligne.id_lot, vente.id_organisation, uow)
            uow.lots.update(lot.réduire_quantité(ligne.quantité, model.MotifRéduction.VENTE))
            uow.commit()
        except Exception:
            logger.exception(
                "Vente %s enregistrée mais stock du lot %s non décrémenté (%d unités)",
                vente.numéro, ligne.id_lot, ligne.quantité,
            )
            raise


def _ajouter_avec_identifiant(
    repo: AbstractRepository[E],
    préfixe: str,
    fabriquer: Callable[[str], E],
) -> E:
    """
    Construit l'agrégat avec un identifiant neuf et l'ajoute au repository.

    En cas de collision signalée par le stockage, un nouvel identifiant
    est généré, dans la limite de TENTATIVES_IDENTIFIANT essais.
    """
    for tentative in range(1, TENTATIVES_IDENTIFIANT + 1):
        entité = fabriquer(model.générer_identifiant(préfixe))
        try:
            repo.add(entité)
        except IdentifiantDéjàUtilisé:
            logger.warning(
                "Identifiant %s déjà utilisé (tentative %d/%d)",
                entité.id, tentative, TENTATIVES_IDENTIFIANT,
            )
            continue
        return entité
    raise model.ErreurConflit(f"Impossible de générer un identifiant {préfixe} libre")


def _lot_existant(id_lot: str, id_organisation: str, uow: AbstractUnitOfWork) -> model.Lot:
    lot = uow.lots.get(id_lot, id_organisation)
    if lot is None:
        raise model.ErreurIntrouvable(f"Lot {id_lot} introuvable")
    return lot


def _vente_existante(
    id_vente: str, id_organisation: str, uow: AbstractUnitOfWork
) -> model.Vente:
    vente = uow.ventes.get(id_vente, id_organisation)
    if vente is None:
        raise model.ErreurIntrouvable(f"Vente {id_vente} introuvable")
    return vente


# --- Event Handlers ---


def journaliser_lot_créé(event: events.LotCréé) -> None:
    logger.info(
        "Lot %s (%s, %d sujets) mis en place pour %s",
        event.nom, event.type_lot, event.quantité_initiale, event.id_organisation,
    )


def journaliser_lot_épuisé(event: events.LotÉpuisé) -> None:
    logger.info("Lot %s entièrement vendu", event.nom)


def surveiller_mortalité(
    event: events.MortalitéEnregistrée,
    uow: AbstractUnitOfWork,
) -> None:
    """Journalise une alerte quand la mortalité cumulée dépasse le seuil configuré."""
    with uow:
        lot = uow.lots.get(event.id_lot, event.id_organisation)
    if lot is None:
        return
    seuil = config.get_seuil_alerte_mortalité()
    mortalité = lot.pourcentage_mortalité()
    if mortalité > seuil:
        logger.warning(
            "Mortalité de %.1f %% sur le lot %s (seuil %.1f %%)", mortalité, lot.nom, seuil
        )


def journaliser_vente_créée(event: events.VenteCréée) -> None:
    logger.info("Vente %s enregistrée (total %.2f)", event.numéro, event.total)


def journaliser_vente_livrée(event: events.VenteLivrée) -> None:
    logger.info("Vente %s livrée", event.numéro)


def signaler_vente_annulée(
    event: events.VenteAnnulée,
    uow: AbstractUnitOfWork,
) -> None:
    """Le stock n'est pas réintégré à l'annulation : on le signale pour rapprochement."""
    with uow:
        vente = uow.ventes.get(event.id_vente, event.id_organisation)
    lots = ", ".join(vente.lots_concernés()) if vente else "?"
    logger.warning(
        "Vente %s annulée (%s) : stock non réintégré pour les lots %s",
        event.numéro, event.motif or "sans motif", lots,
    )
