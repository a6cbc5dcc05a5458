"""
Views (lecture) pour le pattern CQRS.

Les views sont des fonctions de lecture qui ne passent pas par le
message bus. Elles retournent des dictionnaires prêts à sérialiser.

- `vente_par_numéro` interroge directement la base (requête SQL),
  sans charger d'agrégat.
- `lots_disponibles` et `statistiques` s'appuient sur les requêtes
  des repositories, car la vendabilité dépend de l'âge du lot au jour
  de la lecture.
"""

from __future__ import annotations

from sqlalchemy import text

from elevage.domain import model
from elevage.service_layer import unit_of_work


def lots_disponibles(
    id_organisation: str, uow: unit_of_work.AbstractUnitOfWork
) -> list[dict]:
    """Lots actifs, non vides et assez âgés pour être vendus."""
    with uow:
        return [
            {
                "id": lot.id,
                "nom": lot.nom,
                "type_lot": lot.type_lot.value,
                "race": lot.race,
                "quantite_actuelle": lot.quantité_actuelle,
                "age_jours": lot.âge_en_jours(),
            }
            for lot in uow.lots.lister_vendables(id_organisation)
        ]


def statistiques(id_organisation: str, uow: unit_of_work.AbstractUnitOfWork) -> dict:
    with uow:
        return {
            "lots": uow.lots.compter(id_organisation),
            "lots_par_type": {
                type_lot.value: uow.lots.compter_par_type(id_organisation, type_lot)
                for type_lot in model.TypeLot
            },
            "lots_actifs": len(uow.lots.lister_actifs(id_organisation)),
            "ventes": uow.ventes.compter(id_organisation),
            "ventes_en_attente": len(uow.ventes.lister_en_attente(id_organisation)),
            "chiffre_affaires": uow.ventes.total_ventes(id_organisation),
        }


def vente_par_numéro(
    id_organisation: str, numéro: str, uow: unit_of_work.AbstractUnitOfWork
) -> dict | None:
    """
    Retourne l'en-tête et les lignes d'une vente à partir de son numéro.

    Requête SQL directe sur les tables, sans charger d'agrégat :
    c'est tout l'intérêt de CQRS.
    """
    with uow:
        lignes = uow.session.execute(
            text(
                "SELECT v.numero, v.statut, v.client_nom, v.total,"
                " l.id_lot, l.quantite, l.prix_unitaire, l.description"
                " FROM ventes v JOIN lignes_vente l ON l.vente_id = v.id"
                " WHERE v.id_organisation = :id_organisation AND v.numero = :numero"
                " ORDER BY l.position"
            ),
            dict(id_organisation=id_organisation, numero=numéro),
        ).mappings().all()
    if not lignes:
        return None
    premier = lignes[0]
    return {
        "numero": premier["numero"],
        "statut": premier["statut"],
        "client": premier["client_nom"],
        "total": premier["total"],
        "lignes": [
            {
                "id_lot": ligne["id_lot"],
                "quantite": ligne["quantite"],
                "prix_unitaire": ligne["prix_unitaire"],
                "description": ligne["description"],
            }
            for ligne in lignes
        ],
    }
