"""
Pattern Unit of Work.

Le Unit of Work (UoW) gère la notion de transaction atomique.
Il coordonne l'écriture en base de données et la collecte
des faits émis par les agrégats au cours de la transaction.

Le UoW agit comme un context manager :
    with uow:
        # ... opérations sur les repositories ...
        uow.commit()

Sans commit(), tout est annulé à la sortie du bloc. Les faits ne sont
retenus qu'au commit : une transaction annulée ne publie rien.

Un même UoW sert plusieurs threads (requêtes concurrentes) : la session,
les repositories et les faits en attente sont propres à chaque thread.
"""

from __future__ import annotations

import abc
import logging
import threading
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from billetterie.adapters import orm, repository
from billetterie.domain import events
from billetterie.domain.errors import ConflitÉtat, StockageIndisponible

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(abc.ABC):
    """
    Interface abstraite du Unit of Work.

    Fournit les repositories `événements`, `catégories` et `réservations`
    et gère commit/rollback. Le rollback est automatique si commit()
    n'est pas appelé (grâce au __exit__ du context manager).
    """

    événements: repository.AbstractÉvénementRepository
    catégories: repository.AbstractCatégorieRepository
    réservations: repository.AbstractRéservationRepository

    def __init__(self) -> None:
        self._local = threading.local()

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    @property
    def _faits_commités(self) -> list[events.Event]:
        if not hasattr(self._local, "faits"):
            self._local.faits = []
        return self._local.faits

    def commit(self) -> None:
        self._commit()
        for agrégat in self._agrégats_vus():
            while agrégat.faits:
                self._faits_commités.append(agrégat.faits.pop(0))

    def collect_new_events(self) -> Iterator[events.Event]:
        """Vide la file des faits commités par le thread courant."""
        faits = self._faits_commités
        while faits:
            yield faits.pop(0)

    def _agrégats_vus(self):
        yield from self.événements.seen
        yield from self.réservations.seen

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


def créer_session_factory(database_uri: str) -> sessionmaker:
    """Crée le moteur, les tables manquantes et la fabrique de sessions."""
    options: dict = {"isolation_level": "SERIALIZABLE"}
    if database_uri.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_uri or database_uri == "sqlite://":
            options["poolclass"] = StaticPool
    engine = create_engine(database_uri, **options)
    orm.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Implémentation concrète du UoW avec SQLAlchemy.

    Crée une session à l'entrée du context manager, la ferme à la sortie.
    Un échec d'écriture est annulé puis traduit : ConflitÉtat si une
    version a changé entre-temps, StockageIndisponible sinon.
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self.session_factory = session_factory

    @property
    def session(self) -> Session:
        return self._local.session

    @property
    def événements(self) -> repository.SqlAlchemyÉvénementRepository:
        return self._local.événements

    @property
    def catégories(self) -> repository.SqlAlchemyCatégorieRepository:
        return self._local.catégories

    @property
    def réservations(self) -> repository.SqlAlchemyRéservationRepository:
        return self._local.réservations

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        session = self.session_factory()
        self._local.session = session
        self._local.événements = repository.SqlAlchemyÉvénementRepository(session)
        self._local.catégories = repository.SqlAlchemyCatégorieRepository(session)
        self._local.réservations = repository.SqlAlchemyRéservationRepository(session)
        return super().__enter__()

    def __exit__(self, *args: object) -> None:
        super().__exit__(*args)
        self.session.close()

    def _commit(self) -> None:
        try:
            self.session.commit()
        except StaleDataError as exc:
            self.session.rollback()
            raise ConflitÉtat("Enregistrement modifié par une autre opération") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Échec d'écriture en base : %s", exc)
            raise StockageIndisponible("La base de données est indisponible") from exc

    def rollback(self) -> None:
        self.session.rollback()
