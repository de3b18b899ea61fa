"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance.
Il expose une interface de type collection (add, get) qui masque
les détails de l'accès aux données.

Un repository par agrégat : événements, catégories de billets
(le registre d'inventaire) et réservations. Les noms de méthodes
du pattern (add, get) restent en anglais ; les requêtes propres
au domaine sont en français.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from billetterie.adapters import orm
from billetterie.domain import inventory, model

T = TypeVar("T")


class AbstractRepository(abc.ABC, Generic[T]):
    """
    Interface abstraite du repository.

    Template Method : add/get gèrent le tracking via `seen`,
    puis délèguent aux méthodes abstraites _add/_get.
    """

    def __init__(self) -> None:
        # `seen` trace les agrégats consultés pendant la transaction,
        # le Unit of Work y collecte leurs faits.
        self.seen: set[T] = set()

    def add(self, agrégat: T) -> None:
        self._add(agrégat)
        self.seen.add(agrégat)

    def get(self, id: str) -> Optional[T]:
        agrégat = self._get(id)
        if agrégat is not None:
            self.seen.add(agrégat)
        return agrégat

    def _suivre(self, agrégats: list[T]) -> list[T]:
        self.seen.update(agrégats)
        return agrégats

    @abc.abstractmethod
    def _add(self, agrégat: T) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, id: str) -> Optional[T]:
        raise NotImplementedError


class AbstractÉvénementRepository(AbstractRepository[model.Événement]):
    pass


class AbstractCatégorieRepository(AbstractRepository[inventory.CatégorieBillets]):
    @abc.abstractmethod
    def avec_blocages_expirés(self, maintenant: datetime) -> list[str]:
        """Identifiants des catégories qui ont au moins un blocage expiré."""
        raise NotImplementedError


class AbstractRéservationRepository(AbstractRepository[model.Réservation]):
    def lister_par_événement(self, événement_id: str) -> list[model.Réservation]:
        return self._suivre(self._lister_par_événement(événement_id))

    def lister_par_client(self, client_id: str) -> list[model.Réservation]:
        return self._suivre(self._lister_par_client(client_id))

    @abc.abstractmethod
    def _lister_par_événement(self, événement_id: str) -> list[model.Réservation]:
        raise NotImplementedError

    @abc.abstractmethod
    def _lister_par_client(self, client_id: str) -> list[model.Réservation]:
        raise NotImplementedError


# --- Implémentations SQLAlchemy ---


class _SqlAlchemyMixin:
    classe: Any

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, agrégat) -> None:
        self.session.add(agrégat)

    def _get(self, id: str):
        return self.session.get(self.classe, id)


class SqlAlchemyÉvénementRepository(_SqlAlchemyMixin, AbstractÉvénementRepository):
    classe = model.Événement


class SqlAlchemyCatégorieRepository(_SqlAlchemyMixin, AbstractCatégorieRepository):
    classe = inventory.CatégorieBillets

    def avec_blocages_expirés(self, maintenant: datetime) -> list[str]:
        requête = (
            select(orm.blocages.c.categorie_id)
            .where(orm.blocages.c.statut == inventory.StatutBlocage.BLOQUE)
            .where(orm.blocages.c.expire_le <= maintenant)
            .distinct()
        )
        return list(self.session.scalars(requête))


class SqlAlchemyRéservationRepository(_SqlAlchemyMixin, AbstractRéservationRepository):
    classe = model.Réservation

    def _lister_par_événement(self, événement_id: str) -> list[model.Réservation]:
        return (
            self.session.query(model.Réservation)
            .filter(model.Réservation.événement_id == événement_id)
            .order_by(model.Réservation.créée_le)
            .all()
        )

    def _lister_par_client(self, client_id: str) -> list[model.Réservation]:
        return (
            self.session.query(model.Réservation)
            .filter(model.Réservation.client_id == client_id)
            .order_by(model.Réservation.créée_le)
            .all()
        )
