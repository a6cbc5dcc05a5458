"""
Point d'entrée Flask.

Adaptateur HTTP de l'élevage : chaque route traduit le JSON reçu en
command, la confie au message bus et renvoie l'agrégat résultant sous
forme de JSON. Les lectures passent par les views (CQRS).

Les erreurs du domaine deviennent des réponses `{"message": ...}` avec
le code HTTP correspondant ; aucune règle métier n'est vérifiée ici.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from flask import Flask, jsonify, request

from elevage import config
from elevage.domain import commands, model
from elevage.service_layer import bootstrap
from elevage.views import views

logging.basicConfig(level=config.get_log_level())

app = Flask(__name__)
bus = bootstrap.bootstrap()

# Correspondance entre les erreurs du domaine et les codes HTTP
CODES_ERREUR = {
    model.ErreurValidation: 400,
    model.ErreurIntrouvable: 404,
    model.ErreurConflit: 409,
    model.ErreurDomaine: 422,
}


@app.errorhandler(model.ErreurValidation)
@app.errorhandler(model.ErreurIntrouvable)
@app.errorhandler(model.ErreurConflit)
@app.errorhandler(model.ErreurDomaine)
def erreur_métier(e: Exception):
    return jsonify({"message": str(e)}), CODES_ERREUR[type(e)]


def _exécuter(cmd: commands.Command):
    return bus.handle(cmd).pop(0)


def _date(valeur: str, classe: type[date] = date) -> date:
    try:
        return classe.fromisoformat(valeur)
    except (TypeError, ValueError):
        raise model.ErreurValidation(f"Date invalide : {valeur}") from None


def _champ(data: dict, nom: str):
    if nom not in data:
        raise model.ErreurValidation(f"Champ manquant : {nom}")
    return data[nom]


# --- Lots ---


@app.route("/organisations/<id_organisation>/lots", methods=["POST"])
def créer_lot_endpoint(id_organisation: str):
    """
    POST /organisations/<org>/lots
    Body JSON : { type_lot, nom, race, date_debut, date_naissance,
                  quantite_initiale, cree_par, id_poulailler?, observations? }
    """
    data = request.json
    try:
        type_lot = model.TypeLot(_champ(data, "type_lot"))
    except ValueError:
        raise model.ErreurValidation(f"Type de lot inconnu : {data['type_lot']}") from None
    lot = _exécuter(
        commands.CréerLot(
            id_organisation=id_organisation,
            type_lot=type_lot,
            nom=_champ(data, "nom"),
            race=_champ(data, "race"),
            date_début=_date(_champ(data, "date_debut")),
            date_naissance=_date(_champ(data, "date_naissance")),
            quantité_initiale=_champ(data, "quantite_initiale"),
            créé_par=_champ(data, "cree_par"),
            id_poulailler=data.get("id_poulailler"),
            observations=data.get("observations"),
        )
    )
    return jsonify({"id": lot.id}), 201


@app.route("/organisations/<id_organisation>/lots/<id_lot>/mortalite", methods=["POST"])
def mortalité_endpoint(id_organisation: str, id_lot: str):
    lot = _exécuter(
        commands.EnregistrerMortalité(
            id_lot=id_lot,
            id_organisation=id_organisation,
            quantité=_champ(request.json, "quantite"),
        )
    )
    return jsonify({"quantite_actuelle": lot.quantité_actuelle}), 200


@app.route("/organisations/<id_organisation>/lots/<id_lot>/poids", methods=["POST"])
def poids_endpoint(id_organisation: str, id_lot: str):
    lot = _exécuter(
        commands.MettreÀJourPoids(
            id_lot=id_lot,
            id_organisation=id_organisation,
            poids=_champ(request.json, "poids"),
        )
    )
    return jsonify({"poids_moyen": lot.poids_moyen}), 200


@app.route("/organisations/<id_organisation>/lots/<id_lot>/cloture", methods=["POST"])
def clôture_endpoint(id_organisation: str, id_lot: str):
    data = request.get_json(silent=True) or {}
    lot = _exécuter(
        commands.TerminerLot(
            id_lot=id_lot,
            id_organisation=id_organisation,
            observations=data.get("observations"),
        )
    )
    return jsonify({"statut": lot.statut.value}), 200


@app.route("/organisations/<id_organisation>/lots/disponibles", methods=["GET"])
def lots_disponibles_endpoint(id_organisation: str):
    return jsonify(views.lots_disponibles(id_organisation, bus.uow)), 200


@app.route("/organisations/<id_organisation>/statistiques", methods=["GET"])
def statistiques_endpoint(id_organisation: str):
    return jsonify(views.statistiques(id_organisation, bus.uow)), 200


# --- Ventes ---


@app.route("/organisations/<id_organisation>/ventes", methods=["POST"])
def créer_vente_endpoint(id_organisation: str):
    """
    POST /organisations/<org>/ventes
    Body JSON : { client: {id, nom, ...}, lignes: [{id_lot, type_produit,
                  quantite, prix_unitaire, description?}], cree_par,
                  remise_totale?, observations? }
    """
    data = request.json
    client = _champ(data, "client")
    try:
        lignes = tuple(
            commands.LigneDemandée(
                id_lot=_champ(ligne, "id_lot"),
                type_produit=model.TypeProduit(_champ(ligne, "type_produit")),
                quantité=_champ(ligne, "quantite"),
                prix_unitaire=_champ(ligne, "prix_unitaire"),
                description=ligne.get("description"),
            )
            for ligne in data.get("lignes", [])
        )
    except ValueError as e:
        raise model.ErreurValidation(f"Ligne de vente invalide : {e}") from None
    vente = _exécuter(
        commands.CréerVente(
            id_organisation=id_organisation,
            client=model.Client(
                id=client.get("id", ""),
                nom=client.get("nom", ""),
                document=client.get("document"),
                téléphone=client.get("telephone"),
                email=client.get("email"),
                adresse=client.get("adresse"),
            ),
            lignes=lignes,
            créé_par=_champ(data, "cree_par"),
            remise_totale=data.get("remise_totale", 0.0),
            observations=data.get("observations"),
        )
    )
    return jsonify({"id": vente.id, "numero": vente.numéro, "total": vente.total}), 201


@app.route("/organisations/<id_organisation>/ventes/<id_vente>/confirmation", methods=["POST"])
def confirmation_endpoint(id_organisation: str, id_vente: str):
    vente = _exécuter(commands.ConfirmerVente(id_vente=id_vente, id_organisation=id_organisation))
    return jsonify({"statut": vente.statut.value}), 200


@app.route("/organisations/<id_organisation>/ventes/<id_vente>/livraison", methods=["POST"])
def livraison_endpoint(id_organisation: str, id_vente: str):
    data = request.get_json(silent=True) or {}
    date_livraison = data.get("date_livraison")
    vente = _exécuter(
        commands.LivrerVente(
            id_vente=id_vente,
            id_organisation=id_organisation,
            date_livraison=_date(date_livraison, datetime) if date_livraison else None,
        )
    )
    return jsonify({"statut": vente.statut.value}), 200


@app.route("/organisations/<id_organisation>/ventes/<id_vente>/annulation", methods=["POST"])
def annulation_endpoint(id_organisation: str, id_vente: str):
    data = request.get_json(silent=True) or {}
    vente = _exécuter(
        commands.AnnulerVente(
            id_vente=id_vente, id_organisation=id_organisation, motif=data.get("motif")
        )
    )
    return jsonify({"statut": vente.statut.value}), 200


@app.route("/organisations/<id_organisation>/ventes/<numero>", methods=["GET"])
def vente_endpoint(id_organisation: str, numero: str):
    """
    GET /organisations/<org>/ventes/<numero>

    Retourne une vente et ses lignes (lecture CQRS).
    """
    result = views.vente_par_numéro(id_organisation, numero, bus.uow)
    if result is None:
        return "not found", 404
    return jsonify(result), 200
