"""
Bootstrap : assemblage de l'application (Composition Root).

Seul module qui choisit les implémentations : le Unit of Work
SQLAlchemy sur la base configurée en production, un fake en test.
Il relie aussi chaque command et chaque event à ses handlers.
"""

from __future__ import annotations

from typing import Any

from elevage.adapters import orm
from elevage.domain import commands, events
from elevage.service_layer import handlers, messagebus, unit_of_work


def bootstrap(
    créer_schéma: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Assemble le message bus de l'élevage.

    Sans `uow` fourni, le bus travaille sur la base de `ELEVAGE_DB_URI`,
    dont les tables manquantes sont créées si `créer_schéma` est vrai.
    Les `extra_dependencies` sont injectées par nom dans les handlers.
    """
    if uow is None:
        uow = unit_of_work.SqlAlchemyUnitOfWork()
        if créer_schéma:
            orm.créer_schéma(unit_of_work.DEFAULT_ENGINE)

    return messagebus.MessageBus(
        uow=uow,
        event_handlers=EVENT_HANDLERS,
        command_handlers=COMMAND_HANDLERS,
        dependencies=dict(extra_dependencies),
    )


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list] = {
    events.LotCréé: [handlers.journaliser_lot_créé],
    events.LotÉpuisé: [handlers.journaliser_lot_épuisé],
    events.MortalitéEnregistrée: [handlers.surveiller_mortalité],
    events.VenteCréée: [handlers.journaliser_vente_créée],
    events.VenteLivrée: [handlers.journaliser_vente_livrée],
    events.VenteAnnulée: [handlers.signaler_vente_annulée],
}

COMMAND_HANDLERS: dict[type[commands.Command], Any] = {
    commands.CréerLot: handlers.créer_lot,
    commands.EnregistrerMortalité: handlers.enregistrer_mortalité,
    commands.MettreÀJourPoids: handlers.mettre_à_jour_poids,
    commands.TerminerLot: handlers.terminer_lot,
    commands.LiquiderLot: handlers.liquider_lot,
    commands.CréerVente: handlers.créer_vente,
    commands.ConfirmerVente: handlers.confirmer_vente,
    commands.LivrerVente: handlers.livrer_vente,
    commands.AnnulerVente: handlers.annuler_vente,
}
