"""
Taxonomie des erreurs de la billetterie.

Toutes les erreurs métier dérivent d'ErreurBilletterie, qui porte :
- un genre (discriminant), utilisé par les adaptateurs pour décider
  du traitement (code HTTP, retry, log) ;
- un message lisible ;
- des détails contextuels (ex : fenêtre restante pour une annulation tardive) ;
- un indicateur `visible` : faux pour les erreurs de cohérence interne,
  qui sont des défauts et non des refus adressés à l'utilisateur.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Any, Optional


class GenreErreur(Enum):
    CAPACITE_DEPASSEE = "CAPACITE_DEPASSEE"
    JETON_INVALIDE = "JETON_INVALIDE"
    ANNULATION_TARDIVE = "ANNULATION_TARDIVE"
    ANNULATION_REFUSEE = "ANNULATION_REFUSEE"
    PASSERELLE_INDISPONIBLE = "PASSERELLE_INDISPONIBLE"
    STOCKAGE_INDISPONIBLE = "STOCKAGE_INDISPONIBLE"
    CONFLIT_ETAT = "CONFLIT_ETAT"
    INTROUVABLE = "INTROUVABLE"
    REGLE_METIER = "REGLE_METIER"


class ErreurBilletterie(Exception):
    """Erreur structurée : un genre, un message et un contexte."""

    genre: GenreErreur = GenreErreur.REGLE_METIER
    visible: bool = True

    def __init__(self, message: str, **détails: Any):
        super().__init__(message)
        self.message = message
        self.détails = détails

    def __str__(self) -> str:
        return f"{self.genre.value}: {self.message}"


class RègleMétier(ErreurBilletterie):
    """Une règle de gestion n'est pas respectée (quantité, dates, statut...)."""

    genre = GenreErreur.REGLE_METIER


class CapacitéDépassée(ErreurBilletterie):
    """Pas assez de places libres dans la catégorie demandée."""

    genre = GenreErreur.CAPACITE_DEPASSEE

    def __init__(self, catégorie_id: str, demandée: int, disponible: int):
        super().__init__(
            f"Capacité dépassée pour la catégorie {catégorie_id} :"
            f" {demandée} demandée(s), {disponible} disponible(s)",
            catégorie_id=catégorie_id,
            demandée=demandée,
            disponible=disponible,
        )
        self.catégorie_id = catégorie_id
        self.demandée = demandée
        self.disponible = disponible


class Complet(CapacitéDépassée):
    """Levée par la réservation quand la catégorie ne peut plus accueillir la demande."""


class JetonInvalide(ErreurBilletterie):
    """Incohérence du registre d'inventaire : c'est un bug, pas un refus."""

    genre = GenreErreur.JETON_INVALIDE
    visible = False


class AnnulationTardive(ErreurBilletterie):
    """Annulation d'une réservation payée trop proche du début de l'événement."""

    genre = GenreErreur.ANNULATION_TARDIVE

    def __init__(self, fenêtre_restante: timedelta):
        super().__init__(
            "Annulation impossible : l'événement commence dans"
            f" {_formater_durée(fenêtre_restante)}",
            fenêtre_restante_secondes=int(fenêtre_restante.total_seconds()),
        )
        self.fenêtre_restante = fenêtre_restante


class AnnulationRefusée(ErreurBilletterie):
    genre = GenreErreur.ANNULATION_REFUSEE

    def __init__(self, raison: str):
        super().__init__(f"Annulation refusée : {raison}", raison=raison)
        self.raison = raison


class PasserelleIndisponible(ErreurBilletterie):
    """Erreur transitoire de la passerelle de paiement : on peut réessayer."""

    genre = GenreErreur.PASSERELLE_INDISPONIBLE


class StockageIndisponible(ErreurBilletterie):
    """Échec de persistance : rien n'a été enregistré."""

    genre = GenreErreur.STOCKAGE_INDISPONIBLE
    visible = False


class ConflitÉtat(ErreurBilletterie):
    """Modification concurrente détectée : recharger avant de redécider."""

    genre = GenreErreur.CONFLIT_ETAT


class Introuvable(ErreurBilletterie):
    genre = GenreErreur.INTROUVABLE

    def __init__(self, entité: str, identifiant: Optional[str]):
        super().__init__(
            f"{entité} introuvable : {identifiant}",
            entité=entité,
            identifiant=identifiant,
        )


def _formater_durée(durée: timedelta) -> str:
    secondes = max(int(durée.total_seconds()), 0)
    heures, reste = divmod(secondes, 3600)
    return f"{heures} h {reste // 60:02d} min"
