"""
Events du domaine.

Les events représentent des faits qui se sont produits dans le système.
Ils sont immuables et nommés au passé. Les agrégats les accumulent
dans leur liste `faits` ; le Unit of Work les collecte après commit.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


@dataclass(frozen=True)
class RéservationCréée(Event):
    réservation_id: str
    événement_id: str
    catégorie_id: str
    quantité: int


@dataclass(frozen=True)
class RéservationConfirmée(Event):
    réservation_id: str
    client_id: str
    montant: Decimal


@dataclass(frozen=True)
class PaiementÉchoué(Event):
    réservation_id: str
    motif: Optional[str]


@dataclass(frozen=True)
class RéservationAnnulée(Event):
    réservation_id: str
    événement_id: str
    remboursable: bool


@dataclass(frozen=True)
class RemboursementEffectué(Event):
    réservation_id: str
    montant: Decimal


@dataclass(frozen=True)
class RemboursementEnSouffrance(Event):
    """Le remboursement a échoué : la réservation est annulée mais l'argent n'est pas rendu."""

    réservation_id: str
    montant: Decimal
    motif: str


@dataclass(frozen=True)
class BlocageExpiré(Event):
    """Une réservation non payée a été abandonnée et ses places rendues."""

    réservation_id: str
    catégorie_id: str


@dataclass(frozen=True)
class ÉvénementAnnulé(Event):
    événement_id: str
