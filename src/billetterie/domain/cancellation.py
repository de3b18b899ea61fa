"""
Politique d'annulation.

peut_annuler() est une fonction pure : elle ne lit que ses arguments,
ne modifie rien, et rend toujours la même décision pour les mêmes
entrées. Les règles sont évaluées dans l'ordre :

1. une réservation déjà annulée ne peut pas l'être à nouveau ;
2. si l'organisateur a annulé ou supprimé l'événement, l'annulation
   est toujours autorisée, sans contrainte de délai ;
3. une réservation payée ne peut plus être annulée à moins de `délai`
   du début (annulation tardive) ;
4. sinon l'annulation est autorisée, avec remboursement si le
   paiement a réussi.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Union

from billetterie.domain.errors import AnnulationRefusée, AnnulationTardive
from billetterie.domain.model import (
    Paiement,
    Réservation,
    StatutPaiement,
    StatutRéservation,
    ÉtatÉvénement,
    Événement,
)

DÉLAI_PAR_DÉFAUT = timedelta(hours=24)

STATUTS_ANNULABLES = frozenset({StatutRéservation.EN_ATTENTE, StatutRéservation.CONFIRMEE})


@dataclass(frozen=True)
class Autorisée:
    remboursable: bool


@dataclass(frozen=True)
class Refusée:
    raison: str


@dataclass(frozen=True)
class RefusTardif:
    """Refus pour cause de délai : distinct d'un refus ordinaire."""

    fenêtre_restante: timedelta


Décision = Union[Autorisée, Refusée, RefusTardif]


def peut_annuler(
    événement: Événement,
    réservation: Réservation,
    paiement: Paiement,
    maintenant: datetime,
    délai: timedelta = DÉLAI_PAR_DÉFAUT,
) -> Décision:
    if réservation.statut not in STATUTS_ANNULABLES:
        return Refusée("réservation déjà annulée")

    payée = paiement.statut is StatutPaiement.REUSSI

    if événement.annulé or événement.état is ÉtatÉvénement.SUPPRIME:
        return Autorisée(remboursable=payée)

    fenêtre = événement.début - maintenant
    if fenêtre < délai and payée:
        return RefusTardif(fenêtre_restante=fenêtre)

    return Autorisée(remboursable=payée)


def exiger_autorisation(décision: Décision) -> Autorisée:
    """Traduit un refus en erreur ; retourne l'autorisation sinon."""
    if isinstance(décision, Autorisée):
        return décision
    if isinstance(décision, RefusTardif):
        raise AnnulationTardive(décision.fenêtre_restante)
    if isinstance(décision, Refusée):
        raise AnnulationRefusée(décision.raison)
    raise TypeError(f"Décision inconnue : {décision!r}")
