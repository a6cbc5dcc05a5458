"""
Schéma SQL avec SQLAlchemy Core.

Les entités du domaine sont immuables : plutôt que de les mapper sur
les tables (classical mapping), le repository convertit explicitement
chaque ligne en entité et inversement. Le modèle reste ainsi ignorant
de la persistance (persistence ignorance).

Les noms de colonnes SQL restent en ASCII pour la compatibilité,
le repository traduit vers les attributs français du domaine.
"""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

# --- Définition des tables ---

lots = Table(
    "lots",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("id_organisation", String(255), nullable=False, index=True),
    Column("type_lot", String(32), nullable=False),
    Column("nom", String(255), nullable=False),
    Column("race", String(255), nullable=False),
    Column("date_debut", Date, nullable=False),
    Column("date_naissance", Date, nullable=False),
    Column("quantite_initiale", Integer, nullable=False),
    Column("quantite_actuelle", Integer, nullable=False),
    Column("statut", String(32), nullable=False),
    Column("id_poulailler", String(255), nullable=True),
    Column("poids_moyen", Float, nullable=True),
    Column("observations", Text, nullable=True),
    Column("cree_par", String(255), nullable=False),
    Column("cree_le", DateTime, nullable=False),
    Column("modifie_le", DateTime, nullable=False),
)

ventes = Table(
    "ventes",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("id_organisation", String(255), nullable=False, index=True),
    Column("numero", String(64), nullable=False),
    Column("date", DateTime, nullable=False),
    Column("client_id", String(255), nullable=False),
    Column("client_nom", String(255), nullable=False),
    Column("client_document", String(255), nullable=True),
    Column("client_telephone", String(64), nullable=True),
    Column("client_email", String(255), nullable=True),
    Column("client_adresse", Text, nullable=True),
    Column("sous_total", Float, nullable=False),
    Column("remise_totale", Float, nullable=False),
    Column("total", Float, nullable=False),
    Column("statut", String(32), nullable=False),
    Column("observations", Text, nullable=True),
    Column("date_livraison", DateTime, nullable=True),
    Column("cree_par", String(255), nullable=False),
    Column("cree_le", DateTime, nullable=False),
    Column("modifie_le", DateTime, nullable=False),
    UniqueConstraint("id_organisation", "numero", name="uq_ventes_numero"),
)

lignes_vente = Table(
    "lignes_vente",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vente_id", String(64), ForeignKey("ventes.id"), nullable=False),
    Column("position", Integer, nullable=False),
    Column("id_produit", String(255), nullable=False),
    Column("id_lot", String(64), nullable=False, index=True),
    Column("type_produit", String(32), nullable=False),
    Column("quantite", Integer, nullable=False),
    Column("prix_unitaire", Float, nullable=False),
    Column("sous_total", Float, nullable=False),
    Column("description", Text, nullable=False),
)

# Un compteur par organisation pour la numérotation des ventes
compteurs_ventes = Table(
    "compteurs_ventes",
    metadata,
    Column("id_organisation", String(255), primary_key=True),
    Column("prochain_numero", Integer, nullable=False),
)


def créer_schéma(engine: Engine) -> None:
    """Crée les tables manquantes (idempotent)."""
    metadata.create_all(engine)
