"""
Tests d'intégration des Repositories avec SQLite en mémoire.

Ces tests vérifient que le mapping ORM fonctionne correctement :
- un Événement est sauvegardé et rechargé avec ses catégories et blocages ;
- une Réservation est rechargée avec son Paiement ;
- les dates reviennent en UTC ;
- les requêtes du domaine (par client, par événement, blocages expirés).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from billetterie.adapters import repository
from billetterie.domain.inventory import CatégorieBillets, CatégorieTicket, StatutBlocage
from billetterie.domain.model import (
    MéthodePaiement,
    Réservation,
    StatutPaiement,
    StatutRéservation,
    TypeÉvénement,
    Événement,
)
from billetterie.service_layer.unit_of_work import créer_session_factory

MAINTENANT = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session():
    session = créer_session_factory("sqlite://")()
    yield session
    session.close()


def créer_événement(id: str = "evt-1") -> Événement:
    return Événement(
        id,
        "Nuit du jazz",
        TypeÉvénement.CONCERT,
        MAINTENANT + timedelta(days=10),
        [
            CatégorieBillets(f"{id}-vip", CatégorieTicket.VIP, Decimal("99.90"), 10, ordre=1),
            CatégorieBillets(f"{id}-std", CatégorieTicket.STANDARD, Decimal("35.00"), 200, ordre=0),
        ],
        durée=timedelta(hours=2),
    )


def enregistrer_réservation(session, événement: Événement, id: str, client_id: str, quantité: int = 2):
    catégorie = événement.catégories[0]
    catégorie.bloquer(id, quantité, MAINTENANT + timedelta(minutes=15))
    réservation = Réservation.ouvrir(id, client_id, événement.id, catégorie, quantité, MAINTENANT)
    repository.SqlAlchemyRéservationRepository(session).add(réservation)
    session.commit()
    return réservation


class TestÉvénementRepository:
    def test_sauvegarder_et_recharger_un_événement(self, session):
        repo = repository.SqlAlchemyÉvénementRepository(session)
        repo.add(créer_événement())
        session.commit()
        session.expunge_all()

        rechargé = repo.get("evt-1")

        assert rechargé.titre == "Nuit du jazz"
        assert rechargé.type is TypeÉvénement.CONCERT
        assert rechargé.durée == timedelta(hours=2)
        assert [c.id for c in rechargé.catégories] == ["evt-1-std", "evt-1-vip"]
        assert rechargé.catégories[1].prix_unitaire == Decimal("99.90")
        assert rechargé.faits == []

    def test_les_dates_reviennent_en_utc(self, session):
        repo = repository.SqlAlchemyÉvénementRepository(session)
        repo.add(créer_événement())
        session.commit()
        session.expunge_all()

        début = repo.get("evt-1").début

        assert début.tzinfo is not None
        assert début == MAINTENANT + timedelta(days=10)

    def test_get_retourne_none_si_inexistant(self, session):
        assert repository.SqlAlchemyÉvénementRepository(session).get("evt-inconnu") is None

    def test_seen_trace_les_agrégats(self, session):
        repo = repository.SqlAlchemyÉvénementRepository(session)
        événement = créer_événement()
        repo.add(événement)
        session.commit()

        assert événement in repo.seen
        repo2 = repository.SqlAlchemyÉvénementRepository(session)
        repo2.get("evt-1")
        assert len(repo2.seen) == 1


class TestCatégorieRepository:
    def test_les_blocages_survivent_au_rechargement(self, session):
        événement = créer_événement()
        catégorie = événement.catégories[0]
        jeton = catégorie.bloquer("res-1", 3, MAINTENANT + timedelta(minutes=15))
        catégorie.bloquer("res-2", 2, MAINTENANT + timedelta(minutes=15))
        catégorie.confirmer(jeton)
        repository.SqlAlchemyÉvénementRepository(session).add(événement)
        session.commit()
        session.expunge_all()

        rechargée = repository.SqlAlchemyCatégorieRepository(session).get("evt-1-std")

        assert (rechargée.bloquées, rechargée.confirmées, rechargée.disponibles) == (2, 3, 195)
        assert rechargée.statut_blocage("res-1") is StatutBlocage.CONFIRME
        assert rechargée.événement_id == "evt-1"
        assert rechargée.numéro_version == 3

    def test_avec_blocages_expirés(self, session):
        premier, second = créer_événement("evt-1"), créer_événement("evt-2")
        premier.catégories[0].bloquer("res-1", 1, MAINTENANT - timedelta(minutes=1))
        second.catégories[0].bloquer("res-2", 1, MAINTENANT + timedelta(minutes=1))
        confirmé = second.catégories[1].bloquer("res-3", 1, MAINTENANT - timedelta(minutes=1))
        second.catégories[1].confirmer(confirmé)
        repo = repository.SqlAlchemyÉvénementRepository(session)
        repo.add(premier)
        repo.add(second)
        session.commit()

        expirées = repository.SqlAlchemyCatégorieRepository(session).avec_blocages_expirés(MAINTENANT)

        assert expirées == ["evt-1-std"]


class TestRéservationRepository:
    def test_la_réservation_est_rechargée_avec_son_paiement(self, session):
        événement = créer_événement()
        repository.SqlAlchemyÉvénementRepository(session).add(événement)
        réservation = enregistrer_réservation(session, événement, "res-1", "client-1", quantité=3)
        réservation.confirmer_paiement(MéthodePaiement.PAYPAL, "tx-1", MAINTENANT)
        session.commit()
        session.expunge_all()

        rechargée = repository.SqlAlchemyRéservationRepository(session).get("res-1")

        assert rechargée.statut is StatutRéservation.CONFIRMEE
        assert rechargée.créée_le == MAINTENANT
        assert rechargée.numéro_version == 1
        assert rechargée.faits == []
        paiement = rechargée.paiement
        assert paiement.statut is StatutPaiement.REUSSI
        assert paiement.méthode is MéthodePaiement.PAYPAL
        assert paiement.montant == Decimal("105.00")
        assert paiement.payé_le == MAINTENANT

    def test_lister_par_client_et_par_événement(self, session):
        premier, second = créer_événement("evt-1"), créer_événement("evt-2")
        repo_événements = repository.SqlAlchemyÉvénementRepository(session)
        repo_événements.add(premier)
        repo_événements.add(second)
        enregistrer_réservation(session, premier, "res-1", "client-1")
        enregistrer_réservation(session, second, "res-2", "client-1")
        enregistrer_réservation(session, premier, "res-3", "client-2")

        repo = repository.SqlAlchemyRéservationRepository(session)

        assert {r.id for r in repo.lister_par_client("client-1")} == {"res-1", "res-2"}
        assert {r.id for r in repo.lister_par_événement("evt-1")} == {"res-1", "res-3"}
        assert {r.id for r in repo.seen} == {"res-1", "res-2", "res-3"}
