"""
Fakes et helpers partagés par les tests.

- Stock : stockage en mémoire, partageable entre plusieurs Unit of Work
  (un bus par thread dans les tests de concurrence) ;
- FakeUnitOfWork et ses repositories en mémoire ;
- FakePasserelle : passerelle scriptable (refus, pannes, crochets) ;
- Horloge : horloge contrôlée par le test.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from billetterie.adapters.payments import AbstractPasserelle, RésultatPasserelle, StatutTransaction
from billetterie.adapters.repository import (
    AbstractCatégorieRepository,
    AbstractRéservationRepository,
    AbstractÉvénementRepository,
)
from billetterie.config import Paramètres
from billetterie.domain import commands
from billetterie.domain.errors import PasserelleIndisponible
from billetterie.domain.inventory import CatégorieBillets, CatégorieTicket
from billetterie.domain.model import MéthodePaiement, Réservation, TypeÉvénement, Événement
from billetterie.service_layer import bootstrap, messagebus, unit_of_work
from billetterie.service_layer.locks import Verrous

MAINTENANT = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class Horloge:
    def __init__(self, moment: datetime = MAINTENANT):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def avancer(self, durée: timedelta) -> None:
        self.moment += durée


# --- Stockage en mémoire ---


class Stock:
    def __init__(self) -> None:
        self.événements: dict[str, Événement] = {}
        self.réservations: dict[str, Réservation] = {}


class FakeÉvénementRepository(AbstractÉvénementRepository):
    def __init__(self, stock: Stock):
        super().__init__()
        self._stock = stock

    def _add(self, événement: Événement) -> None:
        self._stock.événements[événement.id] = événement

    def _get(self, id: str) -> Optional[Événement]:
        return self._stock.événements.get(id)


class FakeCatégorieRepository(AbstractCatégorieRepository):
    """Les catégories vivent dans leur événement, comme en base."""

    def __init__(self, stock: Stock):
        super().__init__()
        self._stock = stock

    def _toutes(self) -> list[CatégorieBillets]:
        return [c for e in list(self._stock.événements.values()) for c in e.catégories]

    def _add(self, catégorie: CatégorieBillets) -> None:
        self._stock.événements[catégorie.événement_id].catégories.append(catégorie)

    def _get(self, id: str) -> Optional[CatégorieBillets]:
        return next((c for c in self._toutes() if c.id == id), None)

    def avec_blocages_expirés(self, maintenant: datetime) -> list[str]:
        return [c.id for c in self._toutes() if c.blocages_expirés(maintenant)]


class FakeRéservationRepository(AbstractRéservationRepository):
    def __init__(self, stock: Stock):
        super().__init__()
        self._stock = stock

    def _add(self, réservation: Réservation) -> None:
        self._stock.réservations[réservation.id] = réservation

    def _get(self, id: str) -> Optional[Réservation]:
        return self._stock.réservations.get(id)

    def _filtrer(self, critère: Callable[[Réservation], bool]) -> list[Réservation]:
        return sorted(
            (r for r in list(self._stock.réservations.values()) if critère(r)),
            key=lambda r: r.créée_le,
        )

    def _lister_par_événement(self, événement_id: str) -> list[Réservation]:
        return self._filtrer(lambda r: r.événement_id == événement_id)

    def _lister_par_client(self, client_id: str) -> list[Réservation]:
        return self._filtrer(lambda r: r.client_id == client_id)


class FakeUnitOfWork(unit_of_work.AbstractUnitOfWork):
    """
    Unit of Work en mémoire pour les tests.

    `commits` compte les commits, ce qui permet de vérifier qu'une
    opération refusée n'a rien enregistré.
    """

    def __init__(self, stock: Optional[Stock] = None):
        super().__init__()
        self.stock = stock or Stock()
        self.commits = 0
        self._nouveaux_repositories()

    def _nouveaux_repositories(self) -> None:
        self.événements = FakeÉvénementRepository(self.stock)
        self.catégories = FakeCatégorieRepository(self.stock)
        self.réservations = FakeRéservationRepository(self.stock)

    def __enter__(self) -> FakeUnitOfWork:
        self._nouveaux_repositories()
        return super().__enter__()

    def _commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        pass


# --- Passerelle ---


class FakePasserelle(AbstractPasserelle):
    """
    Passerelle scriptable.

    - refuser(n) : les n prochains débits sont refusés ;
    - indisponible / remboursement_indisponible : lève PasserelleIndisponible ;
    - pendant_débit / pendant_remboursement : crochets appelés pendant
      l'appel, pour simuler une opération concurrente.
    Une même clé d'idempotence renvoie toujours le même résultat.
    """

    def __init__(self) -> None:
        self._verrou = threading.Lock()
        self.débits: list[tuple[Decimal, MéthodePaiement, str]] = []
        self.remboursements: list[tuple[str, Decimal]] = []
        self.indisponible = False
        self.remboursement_indisponible = False
        self.pendant_débit: Optional[Callable[[], None]] = None
        self.pendant_remboursement: Optional[Callable[[], None]] = None
        self._refus = 0
        self._par_clé: dict[str, RésultatPasserelle] = {}

    def refuser(self, n: int = 1) -> None:
        self._refus = n

    def débiter(self, montant, méthode, clé_idempotence, jeton=None) -> RésultatPasserelle:
        if self.pendant_débit:
            self.pendant_débit()
        with self._verrou:
            self.débits.append((montant, méthode, clé_idempotence))
            if self.indisponible:
                raise PasserelleIndisponible("panne simulée")
            if clé_idempotence not in self._par_clé:
                if self._refus > 0:
                    self._refus -= 1
                    résultat = RésultatPasserelle(False, None, "Carte refusée")
                else:
                    résultat = RésultatPasserelle(True, f"tx-{clé_idempotence}")
                self._par_clé[clé_idempotence] = résultat
            return self._par_clé[clé_idempotence]

    def rembourser(self, référence_transaction, montant) -> RésultatPasserelle:
        if self.pendant_remboursement:
            self.pendant_remboursement()
        with self._verrou:
            if self.remboursement_indisponible:
                raise PasserelleIndisponible("panne simulée")
            self.remboursements.append((référence_transaction, montant))
            return RésultatPasserelle(True, f"re-{référence_transaction}")

    def statut(self, référence_transaction) -> StatutTransaction:
        with self._verrou:
            for résultat in self._par_clé.values():
                if résultat.référence_transaction == référence_transaction:
                    return StatutTransaction.REUSSIE if résultat.succès else StatutTransaction.ECHOUEE
        return StatutTransaction.EN_ATTENTE

    @property
    def clés_débitées(self) -> set[str]:
        return {clé for _, _, clé in self.débits}


# --- Bootstrap de test ---


def paramètres_de_test(**valeurs) -> Paramètres:
    return Paramètres(_env_file=None, **valeurs)


def bootstrap_test_bus(
    uow: Optional[FakeUnitOfWork] = None,
    passerelle: Optional[FakePasserelle] = None,
    verrous: Optional[Verrous] = None,
    horloge: Optional[Horloge] = None,
    paramètres: Optional[Paramètres] = None,
) -> messagebus.MessageBus:
    """Même wiring que la production, avec des implémentations en mémoire."""
    return bootstrap.bootstrap(
        start_orm=False,
        paramètres=paramètres or paramètres_de_test(),
        uow=uow or FakeUnitOfWork(),
        passerelle=passerelle or FakePasserelle(),
        verrous=verrous or Verrous(),
        horloge=horloge or Horloge(),
    )


def publier(
    bus: messagebus.MessageBus,
    événement_id: str = "evt-1",
    début: datetime = MAINTENANT + timedelta(days=7),
    capacité: int = 10,
    prix: str = "50.00",
    catégorie_id: str = "cat-std",
) -> str:
    bus.handle(
        commands.PublierÉvénement(
            id=événement_id,
            titre="Concert de test",
            type=TypeÉvénement.CONCERT,
            début=début,
            catégories=(
                commands.NouvelleCatégorie(
                    id=catégorie_id,
                    libellé=CatégorieTicket.STANDARD,
                    prix_unitaire=Decimal(prix),
                    capacité=capacité,
                ),
            ),
        )
    )
    return événement_id


def réserver(
    bus: messagebus.MessageBus,
    quantité: int = 2,
    client_id: str = "client-1",
    événement_id: str = "evt-1",
    catégorie_id: str = "cat-std",
) -> str:
    [réservation_id] = bus.handle(
        commands.Réserver(
            événement_id=événement_id,
            catégorie_id=catégorie_id,
            quantité=quantité,
            client_id=client_id,
        )
    )
    return réservation_id


def payer(bus: messagebus.MessageBus, réservation_id: str):
    [résultat] = bus.handle(commands.Payer(réservation_id, MéthodePaiement.CARTE_CREDIT))
    return résultat
