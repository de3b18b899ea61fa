"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from billetterie.domain.inventory import CatégorieTicket
from billetterie.domain.model import DURÉE_PAR_DÉFAUT, MéthodePaiement, TypeÉvénement


class Command:
    """Classe de base pour toutes les commands."""
    pass


@dataclass(frozen=True)
class NouvelleCatégorie:
    """Description d'une catégorie de billets à la publication."""

    id: str
    libellé: CatégorieTicket
    prix_unitaire: Decimal
    capacité: int
    ordre: int = 0


@dataclass(frozen=True)
class PublierÉvénement(Command):
    id: str
    titre: str
    type: TypeÉvénement
    début: datetime
    catégories: tuple[NouvelleCatégorie, ...] = field(default_factory=tuple)
    durée: timedelta = DURÉE_PAR_DÉFAUT


@dataclass(frozen=True)
class SupprimerÉvénement(Command):
    événement_id: str


@dataclass(frozen=True)
class AnnulerÉvénement(Command):
    """Annulation par l'organisateur : toutes les réservations sont annulées et remboursées."""

    événement_id: str


@dataclass(frozen=True)
class Réserver(Command):
    """Demande de réservation de `quantité` billets. `id` est généré s'il est omis."""

    événement_id: str
    catégorie_id: str
    quantité: int
    client_id: str
    id: Optional[str] = None


@dataclass(frozen=True)
class Payer(Command):
    réservation_id: str
    méthode: MéthodePaiement
    jeton_paiement: Optional[str] = None


@dataclass(frozen=True)
class Annuler(Command):
    """
    Annulation par le client. `maintenant` permet de fixer l'instant
    de la décision ; `client_id`, s'il est fourni, doit être le
    propriétaire de la réservation.
    """

    réservation_id: str
    maintenant: Optional[datetime] = None
    client_id: Optional[str] = None


@dataclass(frozen=True)
class RelancerRemboursement(Command):
    réservation_id: str


@dataclass(frozen=True)
class LibérerBlocagesExpirés(Command):
    pass
