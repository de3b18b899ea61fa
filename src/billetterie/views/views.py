"""
Views (lecture) pour le pattern CQRS.

Fonctions de lecture qui interrogent directement la base, sans
charger d'agrégat ni prendre de verrou. Elles alimentent l'affichage :
état d'une réservation et de son paiement, réservations d'un client,
places restantes par catégorie, statut d'un événement.

Les statuts sont renvoyés par leur nom (EN_ATTENTE, REUSSI...),
les montants en chaîne décimale et les dates au format ISO 8601.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, Interval, Numeric, text

from billetterie.adapters.orm import DateHeureUTC
from billetterie.domain.model import statut_affiché
from billetterie.service_layer import unit_of_work

_RÉSERVATIONS = (
    "SELECT r.id AS reservation_id, r.client_id, r.evenement_id, r.categorie_id,"
    " r.quantite, r.statut, r.cree_le, r.annulee_le,"
    " p.statut AS statut_paiement, p.montant, p.methode, p.reference_transaction,"
    " p.remboursement_en_attente"
    " FROM reservations r JOIN paiements p ON p.reservation_id = r.id"
)

_TYPES_RÉSERVATION = dict(
    cree_le=DateHeureUTC,
    annulee_le=DateHeureUTC,
    montant=Numeric(10, 2),
    remboursement_en_attente=Boolean,
)


def _en_json(ligne: Any) -> dict:
    résultat = {}
    for clé, valeur in ligne._mapping.items():
        if isinstance(valeur, datetime):
            valeur = valeur.isoformat()
        elif isinstance(valeur, Decimal):
            valeur = str(valeur)
        résultat[clé] = valeur
    return résultat


def réservation(réservation_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> Optional[dict]:
    """Une réservation et l'état de son paiement, ou None."""
    with uow:
        ligne = uow.session.execute(
            text(_RÉSERVATIONS + " WHERE r.id = :id").columns(**_TYPES_RÉSERVATION),
            dict(id=réservation_id),
        ).first()
        return _en_json(ligne) if ligne else None


def réservations_client(client_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    with uow:
        lignes = uow.session.execute(
            text(
                _RÉSERVATIONS + " WHERE r.client_id = :client_id ORDER BY r.cree_le"
            ).columns(**_TYPES_RÉSERVATION),
            dict(client_id=client_id),
        )
        return [_en_json(l) for l in lignes]


def disponibilités(événement_id: str, uow: unit_of_work.SqlAlchemyUnitOfWork) -> list[dict]:
    """Places bloquées, vendues et restantes de chaque catégorie d'un événement."""
    with uow:
        lignes = uow.session.execute(
            text(
                "SELECT c.id AS categorie_id, c.libelle, c.prix_unitaire, c.capacite,"
                " COALESCE(SUM(CASE WHEN b.statut = 'BLOQUE' THEN b.quantite END), 0) AS bloquees,"
                " COALESCE(SUM(CASE WHEN b.statut = 'CONFIRME' THEN b.quantite END), 0) AS confirmees"
                " FROM categories c LEFT JOIN blocages b ON b.categorie_id = c.id"
                " WHERE c.evenement_id = :evenement_id"
                " GROUP BY c.id, c.libelle, c.prix_unitaire, c.capacite, c.ordre"
                " ORDER BY c.ordre"
            ).columns(prix_unitaire=Numeric(10, 2)),
            dict(evenement_id=événement_id),
        )
        résultat = []
        for ligne in lignes:
            d = _en_json(ligne)
            d["disponibles"] = d["capacite"] - d["bloquees"] - d["confirmees"]
            résultat.append(d)
        return résultat


def statut_événement(
    événement_id: str,
    uow: unit_of_work.SqlAlchemyUnitOfWork,
    maintenant: datetime,
) -> Optional[dict]:
    with uow:
        ligne = uow.session.execute(
            text(
                "SELECT id, titre, type, debut, duree, etat, annule"
                " FROM evenements WHERE id = :id"
            ).columns(debut=DateHeureUTC, duree=Interval, annule=Boolean),
            dict(id=événement_id),
        ).first()
        if ligne is None:
            return None
        statut = statut_affiché(ligne.debut, ligne.duree, ligne.annule, maintenant)
        d = _en_json(ligne)
        del d["duree"]
        d["statut"] = statut.name
        return d
