"""
Tests end-to-end de l'API Flask.

Ces tests vérifient le flux complet :
HTTP request → Flask → Message Bus → Handlers → Repository → SQLite

On utilise le test client Flask avec une base SQLite en mémoire,
ce qui donne des tests rapides tout en couvrant toute la chaîne.
"""

from datetime import date, timedelta

import pytest

from elevage.entrypoints.flask_app import app
from elevage.service_layer import bootstrap, unit_of_work


@pytest.fixture
def sqlite_bus(session_factory):
    """Crée un message bus configuré avec SQLite en mémoire."""
    uow = unit_of_work.SqlAlchemyUnitOfWork(session_factory=session_factory)
    return bootstrap.bootstrap(créer_schéma=False, uow=uow)


@pytest.fixture
def client(sqlite_bus):
    """Client de test Flask avec le bus injecté."""
    import elevage.entrypoints.flask_app as flask_module

    original_bus = flask_module.bus
    flask_module.bus = sqlite_bus
    app.config["TESTING"] = True

    with app.test_client() as client:
        yield client

    flask_module.bus = original_bus


def il_y_a(jours: int) -> str:
    return (date.today() - timedelta(days=jours)).isoformat()


def poster_lot(client, org="org-1", **changements):
    données = {
        "type_lot": "ENGRAISSEMENT",
        "nom": "Bâtiment nord",
        "race": "Cobb 500",
        "date_debut": il_y_a(35),
        "date_naissance": il_y_a(40),
        "quantite_initiale": 500,
        "cree_par": "éleveur-1",
    }
    données.update(changements)
    return client.post(f"/organisations/{org}/lots", json=données)


def poster_vente(client, id_lot, quantite=500, prix=3.5, org="org-1", **changements):
    données = {
        "client": {"id": "cli-1", "nom": "Marché de Rungis"},
        "lignes": [
            {
                "id_lot": id_lot,
                "type_produit": "UNITES",
                "quantite": quantite,
                "prix_unitaire": prix,
            }
        ],
        "cree_par": "vendeur-1",
    }
    données.update(changements)
    return client.post(f"/organisations/{org}/ventes", json=données)


class TestLots:
    def test_créer_un_lot(self, client):
        response = poster_lot(client)
        assert response.status_code == 201
        assert response.json["id"].startswith("lot_")

    def test_champ_manquant(self, client):
        données = {"type_lot": "PONTE", "nom": "Pondeuses"}
        response = client.post("/organisations/org-1/lots", json=données)
        assert response.status_code == 400
        assert response.json["message"] == "Champ manquant : race"

    def test_type_inconnu(self, client):
        response = poster_lot(client, type_lot="CANARDS")
        assert response.status_code == 400

    def test_date_invalide(self, client):
        response = poster_lot(client, date_debut="hier")
        assert response.status_code == 400
        assert "Date invalide" in response.json["message"]

    def test_effectif_hors_limites(self, client):
        response = poster_lot(client, type_lot="PONTE", quantite_initiale=10)
        assert response.status_code == 400

    def test_effectif_non_entier(self, client):
        response = poster_lot(client, quantite_initiale="500")
        assert response.status_code == 400
        assert "nombre entier" in response.json["message"]

    def test_nom_en_conflit(self, client):
        poster_lot(client)
        response = poster_lot(client)
        assert response.status_code == 409

    def test_enregistrer_de_la_mortalité(self, client):
        id_lot = poster_lot(client).json["id"]
        response = client.post(
            f"/organisations/org-1/lots/{id_lot}/mortalite", json={"quantite": 20}
        )
        assert response.status_code == 200
        assert response.json["quantite_actuelle"] == 480

    def test_lot_introuvable(self, client):
        response = client.post(
            "/organisations/org-1/lots/lot-404/mortalite", json={"quantite": 1}
        )
        assert response.status_code == 404

    def test_lot_d_une_autre_organisation(self, client):
        id_lot = poster_lot(client).json["id"]
        response = client.post(
            f"/organisations/org-2/lots/{id_lot}/poids", json={"poids": 2.0}
        )
        assert response.status_code == 404

    def test_poids(self, client):
        id_lot = poster_lot(client).json["id"]
        ok = client.post(f"/organisations/org-1/lots/{id_lot}/poids", json={"poids": 2.4})
        trop = client.post(f"/organisations/org-1/lots/{id_lot}/poids", json={"poids": 12})
        assert ok.json["poids_moyen"] == 2.4
        assert trop.status_code == 400

    def test_clôture(self, client):
        id_lot = poster_lot(client).json["id"]
        response = client.post(
            f"/organisations/org-1/lots/{id_lot}/cloture", json={"observations": "Fin"}
        )
        assert response.status_code == 200
        assert response.json["statut"] == "TERMINE"

    def test_lots_disponibles(self, client):
        id_lot = poster_lot(client).json["id"]
        # Trop jeune pour être vendu
        poster_lot(
            client, nom="Poussins", type_lot="ELEVAGE", date_naissance=il_y_a(10), date_debut=il_y_a(5)
        )

        response = client.get("/organisations/org-1/lots/disponibles")

        assert response.status_code == 200
        assert response.json == [
            {
                "id": id_lot,
                "nom": "Bâtiment nord",
                "type_lot": "ENGRAISSEMENT",
                "race": "Cobb 500",
                "quantite_actuelle": 500,
                "age_jours": 40,
            }
        ]


class TestVentes:
    def test_vendre_un_lot_complet(self, client):
        id_lot = poster_lot(client).json["id"]

        response = poster_vente(client, id_lot)

        assert response.status_code == 201
        assert response.json["numero"] == "VTE-0001"
        assert response.json["total"] == 1750
        assert client.get("/organisations/org-1/lots/disponibles").json == []

    def test_consulter_une_vente(self, client):
        id_lot = poster_lot(client).json["id"]
        poster_vente(client, id_lot, quantite=100, prix=3.5)

        response = client.get("/organisations/org-1/ventes/VTE-0001")

        assert response.status_code == 200
        assert response.json == {
            "numero": "VTE-0001",
            "statut": "EN_ATTENTE",
            "client": "Marché de Rungis",
            "total": 350.0,
            "lignes": [
                {
                    "id_lot": id_lot,
                    "quantite": 100,
                    "prix_unitaire": 3.5,
                    "description": "Bâtiment nord - Cobb 500",
                }
            ],
        }

    def test_vente_inconnue(self, client):
        assert client.get("/organisations/org-1/ventes/VTE-9999").status_code == 404

    def test_vente_invisible_depuis_une_autre_organisation(self, client):
        id_lot = poster_lot(client).json["id"]
        poster_vente(client, id_lot, quantite=10)
        assert client.get("/organisations/org-2/ventes/VTE-0001").status_code == 404

    def test_stock_insuffisant(self, client):
        id_lot = poster_lot(client).json["id"]
        response = poster_vente(client, id_lot, quantite=600)
        assert response.status_code == 422
        assert "Stock insuffisant" in response.json["message"]

    def test_quantité_vendue_non_entière(self, client):
        id_lot = poster_lot(client).json["id"]
        response = poster_vente(client, id_lot, quantite=12.5)
        assert response.status_code == 400
        assert client.get("/organisations/org-1/ventes/VTE-0001").status_code == 404

    def test_type_de_produit_inconnu(self, client):
        id_lot = poster_lot(client).json["id"]
        response = poster_vente(
            client,
            id_lot,
            lignes=[{"id_lot": id_lot, "type_produit": "PLUMES", "quantite": 1, "prix_unitaire": 1}],
        )
        assert response.status_code == 400

    def test_cycle_de_vie(self, client):
        id_lot = poster_lot(client).json["id"]
        id_vente = poster_vente(client, id_lot, quantite=100).json["id"]
        base = f"/organisations/org-1/ventes/{id_vente}"

        assert client.post(f"{base}/confirmation").json["statut"] == "CONFIRMEE"
        livraison = client.post(f"{base}/livraison", json={"date_livraison": "2024-05-02T08:00:00"})
        assert livraison.json["statut"] == "LIVREE"

        annulation = client.post(f"{base}/annulation", json={"motif": "erreur"})
        assert annulation.status_code == 422

    def test_annuler_une_vente(self, client):
        id_lot = poster_lot(client).json["id"]
        id_vente = poster_vente(client, id_lot, quantite=100).json["id"]

        response = client.post(
            f"/organisations/org-1/ventes/{id_vente}/annulation", json={"motif": "client absent"}
        )

        assert response.json["statut"] == "ANNULEE"
        statistiques = client.get("/organisations/org-1/statistiques").json
        assert statistiques["chiffre_affaires"] == 0

    def test_statistiques(self, client):
        id_lot = poster_lot(client).json["id"]
        poster_lot(client, nom="Pondeuses", type_lot="PONTE", race="ISA Brown", date_naissance=il_y_a(130))
        poster_vente(client, id_lot, quantite=100, prix=3.5)

        response = client.get("/organisations/org-1/statistiques")

        assert response.json == {
            "lots": 2,
            "lots_par_type": {"PONTE": 1, "ELEVAGE": 0, "ENGRAISSEMENT": 1},
            "lots_actifs": 2,
            "ventes": 1,
            "ventes_en_attente": 1,
            "chiffre_affaires": 350.0,
        }
