"""
Tests unitaires du modèle de domaine.

Ces tests vérifient le comportement des agrégats Événement et
Réservation en isolation complète, sans base de données ni I/O.
C'est le "low gear" : on teste la logique métier au plus près.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from billetterie.domain import events
from billetterie.domain.errors import ConflitÉtat, Introuvable, RègleMétier
from billetterie.domain.inventory import CatégorieBillets, CatégorieTicket
from billetterie.domain.model import (
    MéthodePaiement,
    Réservation,
    StatutPaiement,
    StatutRéservation,
    StatutÉvénement,
    TypeÉvénement,
    ÉtatÉvénement,
    Événement,
    en_utc,
)

MAINTENANT = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
FERMETURE = timedelta(minutes=30)


# --- Helpers ---


def créer_événement(début: datetime = MAINTENANT + timedelta(days=3), **kwargs) -> Événement:
    catégories = kwargs.pop("catégories", None) or [
        CatégorieBillets("cat-vip", CatégorieTicket.VIP, Decimal("120.00"), 20, ordre=1),
        CatégorieBillets("cat-std", CatégorieTicket.STANDARD, Decimal("45.50"), 100, ordre=0),
    ]
    return Événement("evt-1", "Festival d'été", TypeÉvénement.CONCERT, début, catégories, **kwargs)


def ouvrir_réservation(quantité: int = 2) -> Réservation:
    catégorie = CatégorieBillets("cat-std", CatégorieTicket.STANDARD, Decimal("45.50"), 100)
    return Réservation.ouvrir("res-1", "client-1", "evt-1", catégorie, quantité, MAINTENANT)


# --- Tests de l'Événement ---


class TestÉvénement:
    def test_les_catégories_sont_triées_et_rattachées(self):
        événement = créer_événement()

        assert [c.id for c in événement.catégories] == ["cat-std", "cat-vip"]
        assert all(c.événement_id == "evt-1" for c in événement.catégories)
        assert événement.capacité_totale == 120

    def test_une_date_naïve_est_considérée_comme_utc(self):
        événement = créer_événement(début=datetime(2026, 7, 14, 21, 0))
        assert événement.début == datetime(2026, 7, 14, 21, 0, tzinfo=timezone.utc)

    def test_en_utc_convertit_les_autres_fuseaux(self):
        paris = timezone(timedelta(hours=2))
        assert en_utc(datetime(2026, 7, 14, 23, 0, tzinfo=paris)) == datetime(
            2026, 7, 14, 21, 0, tzinfo=timezone.utc
        )

    def test_catégorie_inconnue(self):
        with pytest.raises(Introuvable):
            créer_événement().catégorie("cat-balcon")

    @pytest.mark.parametrize(
        "maintenant, attendu",
        [
            (MAINTENANT - timedelta(minutes=1), StatutÉvénement.A_VENIR),
            (MAINTENANT, StatutÉvénement.EN_COURS),
            (MAINTENANT + timedelta(hours=2, minutes=59), StatutÉvénement.EN_COURS),
            (MAINTENANT + timedelta(hours=3), StatutÉvénement.TERMINE),
        ],
    )
    def test_statut_dérivé_de_l_heure(self, maintenant, attendu):
        événement = créer_événement(début=MAINTENANT)
        assert événement.statut(maintenant) is attendu

    def test_statut_annulé_prime(self):
        événement = créer_événement(annulé=True)
        assert événement.statut(MAINTENANT) is StatutÉvénement.ANNULE


class TestPublication:
    def test_événement_valide(self):
        créer_événement().vérifier_publiable(MAINTENANT)

    def test_titre_obligatoire(self):
        événement = créer_événement()
        événement.titre = "  "
        with pytest.raises(RègleMétier, match="titre"):
            événement.vérifier_publiable(MAINTENANT)

    def test_date_passée_refusée(self):
        with pytest.raises(RègleMétier, match="passé"):
            créer_événement(début=MAINTENANT - timedelta(hours=1)).vérifier_publiable(MAINTENANT)

    def test_au_moins_une_catégorie(self):
        événement = Événement("evt-1", "Vide", TypeÉvénement.SPECTACLE, MAINTENANT + timedelta(days=1))
        with pytest.raises(RègleMétier, match="catégorie"):
            événement.vérifier_publiable(MAINTENANT)

    def test_capacité_totale_nulle_refusée(self):
        événement = créer_événement(
            catégories=[CatégorieBillets("cat-std", CatégorieTicket.STANDARD, Decimal("10"), 0)]
        )
        with pytest.raises(RègleMétier, match="capacité"):
            événement.vérifier_publiable(MAINTENANT)

    def test_prix_négatif_refusé(self):
        événement = créer_événement(
            catégories=[CatégorieBillets("cat-std", CatégorieTicket.STANDARD, Decimal("-1"), 10)]
        )
        with pytest.raises(RègleMétier, match="Prix"):
            événement.vérifier_publiable(MAINTENANT)


class TestRéservable:
    def test_événement_à_venir_réservable(self):
        créer_événement().vérifier_réservable(MAINTENANT, FERMETURE)

    def test_événement_supprimé(self):
        événement = créer_événement()
        événement.supprimer()
        with pytest.raises(RègleMétier, match="supprimé"):
            événement.vérifier_réservable(MAINTENANT, FERMETURE)

    def test_événement_annulé(self):
        événement = créer_événement()
        événement.annuler(MAINTENANT)
        with pytest.raises(RègleMétier, match="annulé"):
            événement.vérifier_réservable(MAINTENANT, FERMETURE)

    def test_événement_commencé(self):
        with pytest.raises(RègleMétier, match="commencé"):
            créer_événement(début=MAINTENANT).vérifier_réservable(MAINTENANT, FERMETURE)

    def test_réservations_fermées_avant_le_début(self):
        événement = créer_événement(début=MAINTENANT + timedelta(minutes=29))
        with pytest.raises(RègleMétier, match="fermées"):
            événement.vérifier_réservable(MAINTENANT, FERMETURE)

    def test_fermeture_exacte_encore_ouverte(self):
        créer_événement(début=MAINTENANT + FERMETURE).vérifier_réservable(MAINTENANT, FERMETURE)


class TestAnnulationÉvénement:
    def test_annuler_émet_un_fait(self):
        événement = créer_événement()

        assert événement.annuler(MAINTENANT) is True

        assert événement.annulé
        assert événement.faits == [events.ÉvénementAnnulé(événement_id="evt-1")]

    def test_annuler_deux_fois_est_sans_effet(self):
        événement = créer_événement()
        événement.annuler(MAINTENANT)
        version = événement.numéro_version

        assert événement.annuler(MAINTENANT) is False
        assert événement.numéro_version == version
        assert len(événement.faits) == 1

    def test_événement_terminé_ne_peut_plus_être_annulé(self):
        événement = créer_événement(début=MAINTENANT - timedelta(days=1))
        with pytest.raises(RègleMétier, match="terminé"):
            événement.annuler(MAINTENANT)

    def test_supprimer(self):
        événement = créer_événement()
        événement.supprimer()
        événement.supprimer()
        assert événement.état is ÉtatÉvénement.SUPPRIME
        assert événement.numéro_version == 1


# --- Tests de la Réservation ---


class TestOuverture:
    def test_ouvrir_calcule_le_montant_et_émet_un_fait(self):
        réservation = ouvrir_réservation(quantité=3)

        assert réservation.statut is StatutRéservation.EN_ATTENTE
        assert réservation.paiement.statut is StatutPaiement.EN_ATTENTE
        assert réservation.paiement.montant == Decimal("136.50")
        assert réservation.paiement.réservation_id == "res-1"
        assert réservation.faits == [
            events.RéservationCréée("res-1", "evt-1", "cat-std", 3)
        ]

    def test_le_jeton_désigne_le_blocage_de_la_réservation(self):
        jeton = ouvrir_réservation(quantité=3).jeton
        assert (jeton.catégorie_id, jeton.référence, jeton.quantité) == ("cat-std", "res-1", 3)


class TestPaiement:
    def test_confirmer_le_paiement(self):
        réservation = ouvrir_réservation()

        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)

        assert réservation.statut is StatutRéservation.CONFIRMEE
        assert réservation.est_payée
        assert réservation.paiement.référence_transaction == "tx-1"
        assert réservation.paiement.payé_le == MAINTENANT
        assert isinstance(réservation.faits[-1], events.RéservationConfirmée)

    def test_un_refus_laisse_la_réservation_en_attente(self):
        réservation = ouvrir_réservation()

        réservation.enregistrer_échec_paiement(MéthodePaiement.CARTE_CREDIT, "Carte refusée")

        assert réservation.statut is StatutRéservation.EN_ATTENTE
        assert réservation.paiement.statut is StatutPaiement.ECHOUE
        assert réservation.paiement.motif_échec == "Carte refusée"
        assert réservation.faits[-1] == events.PaiementÉchoué("res-1", "Carte refusée")

    def test_un_refus_change_la_clé_d_idempotence(self):
        réservation = ouvrir_réservation()
        première_clé = réservation.paiement.clé_idempotence

        réservation.enregistrer_échec_paiement(MéthodePaiement.CARTE_CREDIT, "refus")

        assert première_clé == "res-1-0"
        assert réservation.paiement.clé_idempotence == "res-1-1"

    def test_payer_après_un_refus(self):
        réservation = ouvrir_réservation()
        réservation.enregistrer_échec_paiement(MéthodePaiement.CARTE_CREDIT, "refus")

        réservation.confirmer_paiement(MéthodePaiement.CARTE_DEBIT, "tx-2", MAINTENANT)

        assert réservation.paiement.statut is StatutPaiement.REUSSI
        assert réservation.paiement.motif_échec is None

    def test_payer_deux_fois_est_un_conflit(self):
        réservation = ouvrir_réservation()
        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)

        with pytest.raises(ConflitÉtat):
            réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-2", MAINTENANT)

    def test_payer_une_réservation_annulée_est_un_conflit(self):
        réservation = ouvrir_réservation()
        réservation.annuler(MAINTENANT, remboursable=False)

        with pytest.raises(ConflitÉtat):
            réservation.vérifier_payable()

    def test_chaque_transition_incrémente_la_version(self):
        réservation = ouvrir_réservation()
        réservation.enregistrer_échec_paiement(MéthodePaiement.CARTE_CREDIT, "refus")
        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)
        assert réservation.numéro_version == 2


class TestAnnulationRéservation:
    def test_annuler_une_réservation_payée_remboursable(self):
        réservation = ouvrir_réservation()
        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)

        réservation.annuler(MAINTENANT, remboursable=True)

        assert réservation.statut is StatutRéservation.ANNULEE
        assert réservation.annulée_le == MAINTENANT
        assert réservation.paiement.statut is StatutPaiement.REUSSI
        assert réservation.paiement.remboursement_en_attente

    def test_annuler_une_réservation_non_payée(self):
        réservation = ouvrir_réservation()

        réservation.annuler(MAINTENANT, remboursable=False)

        assert réservation.paiement.statut is StatutPaiement.EN_ATTENTE
        assert not réservation.paiement.remboursement_en_attente
        assert réservation.faits[-1] == events.RéservationAnnulée("res-1", "evt-1", False)

    def test_annuler_deux_fois_est_un_conflit(self):
        réservation = ouvrir_réservation()
        réservation.annuler(MAINTENANT, remboursable=False)

        with pytest.raises(ConflitÉtat):
            réservation.annuler(MAINTENANT, remboursable=False)

    def test_enregistrer_le_remboursement(self):
        réservation = ouvrir_réservation()
        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)
        réservation.annuler(MAINTENANT, remboursable=True)

        réservation.enregistrer_remboursement(MAINTENANT)

        assert réservation.paiement.statut is StatutPaiement.REMBOURSE
        assert not réservation.paiement.remboursement_en_attente
        assert réservation.paiement.remboursé_le == MAINTENANT
        assert réservation.faits[-1] == events.RemboursementEffectué("res-1", Decimal("91.00"))

    def test_pas_de_remboursement_sans_demande(self):
        réservation = ouvrir_réservation()
        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)

        with pytest.raises(ConflitÉtat):
            réservation.enregistrer_remboursement(MAINTENANT)

    def test_expirer_une_réservation_en_attente(self):
        réservation = ouvrir_réservation()

        réservation.expirer(MAINTENANT)

        assert réservation.statut is StatutRéservation.ANNULEE
        assert réservation.faits[-1] == events.BlocageExpiré("res-1", "cat-std")

    def test_une_réservation_confirmée_n_expire_pas(self):
        réservation = ouvrir_réservation()
        réservation.confirmer_paiement(MéthodePaiement.CARTE_CREDIT, "tx-1", MAINTENANT)

        with pytest.raises(ConflitÉtat):
            réservation.expirer(MAINTENANT)
