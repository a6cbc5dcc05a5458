"""
Tests unitaires des abonnements (Abonnement, Diffuseur).
"""

from elevage.adapters.abonnements import Diffuseur


class TestDiffuseur:
    def test_diffuser_aux_abonnés_de_la_clé(self):
        diffuseur = Diffuseur()
        lots = diffuseur.ouvrir(("lots", "org-1"))
        ventes = diffuseur.ouvrir(("ventes", "org-1"))

        diffuseur.diffuser(("lots", "org-1"), "instantané")

        assert list(lots) == ["instantané"]
        assert list(ventes) == []

    def test_plusieurs_abonnés_sur_une_même_clé(self):
        diffuseur = Diffuseur()
        premier = diffuseur.ouvrir("clé")
        second = diffuseur.ouvrir("clé")

        diffuseur.diffuser("clé", 1)

        assert list(premier) == [1]
        assert list(second) == [1]

    def test_écouté(self):
        diffuseur = Diffuseur()
        assert not diffuseur.écouté("clé")
        abonnement = diffuseur.ouvrir("clé")
        assert diffuseur.écouté("clé")
        abonnement.fermer()
        assert not diffuseur.écouté("clé")

    def test_diffuser_sans_abonné(self):
        Diffuseur().diffuser("personne", "instantané")


class TestAbonnement:
    def test_itérer_vide_le_flux(self):
        abonnement = Diffuseur().ouvrir("clé")
        abonnement.pousser(1)
        abonnement.pousser(2)

        assert list(abonnement) == [1, 2]
        assert list(abonnement) == []

    def test_dernier(self):
        abonnement = Diffuseur().ouvrir("clé")
        assert abonnement.dernier() is None
        for instantané in ("a", "b", "c"):
            abonnement.pousser(instantané)
        assert abonnement.dernier() == "c"
        assert list(abonnement) == []

    def test_fermeture_abandonne_les_instantanés_en_attente(self):
        diffuseur = Diffuseur()
        abonnement = diffuseur.ouvrir("clé")
        abonnement.pousser("en attente")

        abonnement.fermer()
        diffuseur.diffuser("clé", "trop tard")
        abonnement.pousser("trop tard")

        assert not abonnement.actif
        assert list(abonnement) == []

    def test_fermer_deux_fois(self):
        abonnement = Diffuseur().ouvrir("clé")
        abonnement.fermer()
        abonnement.fermer()
        assert not abonnement.actif

    def test_context_manager(self):
        diffuseur = Diffuseur()
        with diffuseur.ouvrir("clé") as abonnement:
            assert abonnement.actif
        assert not abonnement.actif
        assert not diffuseur.écouté("clé")

    def test_fermer_un_abonnement_n_affecte_pas_les_autres(self):
        diffuseur = Diffuseur()
        fermé = diffuseur.ouvrir("clé")
        ouvert = diffuseur.ouvrir("clé")
        fermé.fermer()

        diffuseur.diffuser("clé", "suite")

        assert list(ouvert) == ["suite"]
