"""
Point d'entrée Flask.

L'API Flask est un thin adapter : elle convertit les requêtes HTTP
en commands, les envoie au message bus, et convertit les résultats
et les erreurs en réponses JSON. Elle ne contient aucune logique métier.

Le bus est construit au premier appel (les tests le remplacent
avant d'envoyer leurs requêtes).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from flask import Flask, jsonify, request

from billetterie.domain import commands
from billetterie.domain.errors import ErreurBilletterie, GenreErreur, RègleMétier
from billetterie.domain.inventory import CatégorieTicket
from billetterie.domain.model import MéthodePaiement, TypeÉvénement
from billetterie.service_layer import bootstrap, messagebus
from billetterie.service_layer.handlers import RésultatAnnulation
from billetterie.views import views


app = Flask(__name__)
bus: Optional[messagebus.MessageBus] = None

CODES_HTTP = {
    GenreErreur.REGLE_METIER: 400,
    GenreErreur.INTROUVABLE: 404,
    GenreErreur.CAPACITE_DEPASSEE: 409,
    GenreErreur.CONFLIT_ETAT: 409,
    GenreErreur.ANNULATION_REFUSEE: 409,
    GenreErreur.ANNULATION_TARDIVE: 422,
    GenreErreur.PASSERELLE_INDISPONIBLE: 503,
    GenreErreur.STOCKAGE_INDISPONIBLE: 503,
    GenreErreur.JETON_INVALIDE: 500,
}


def get_bus() -> messagebus.MessageBus:
    global bus
    if bus is None:
        bus = bootstrap.bootstrap()
    return bus


@app.errorhandler(ErreurBilletterie)
def erreur_billetterie(exc: ErreurBilletterie):
    code = CODES_HTTP.get(exc.genre, 500)
    if not exc.visible:
        return jsonify({"erreur": exc.genre.value, "message": "Erreur interne"}), code
    return jsonify({"erreur": exc.genre.value, "message": exc.message, "details": exc.détails}), code


# --- Lecture des corps de requête ---


def _champ(data: dict, nom: str) -> Any:
    if nom not in data:
        raise RègleMétier(f"Champ obligatoire manquant : {nom}")
    return data[nom]


def _enum(classe: type[Enum], valeur: str):
    try:
        return classe[valeur]
    except KeyError:
        raise RègleMétier(f"Valeur inconnue pour {classe.__name__} : {valeur}") from None


def _date(valeur: str) -> datetime:
    try:
        return datetime.fromisoformat(valeur)
    except (TypeError, ValueError):
        raise RègleMétier(f"Date invalide : {valeur}") from None


def _prix(valeur: Any) -> Decimal:
    try:
        return Decimal(str(valeur))
    except InvalidOperation:
        raise RègleMétier(f"Prix invalide : {valeur}") from None


def _entier(nom: str, valeur: Any) -> int:
    try:
        return int(valeur)
    except (TypeError, ValueError):
        raise RègleMétier(f"Entier attendu pour {nom} : {valeur}") from None


def _annulation_json(résultat: RésultatAnnulation) -> dict:
    return {
        "reservation_id": résultat.réservation_id,
        "remboursable": résultat.remboursable,
        "rembourse": résultat.remboursé,
        "remboursement_en_attente": résultat.remboursement_en_attente,
        "message": résultat.message,
    }


# --- Événements ---


@app.route("/evenements", methods=["POST"])
def publier_evenement_endpoint():
    """
    POST /evenements
    Body JSON : { id, titre, type, debut, duree_minutes?,
                  categories: [{ id, libelle, prix, capacite, ordre? }] }
    """
    data = request.get_json()
    catégories = tuple(
        commands.NouvelleCatégorie(
            id=_champ(c, "id"),
            libellé=_enum(CatégorieTicket, _champ(c, "libelle")),
            prix_unitaire=_prix(_champ(c, "prix")),
            capacité=_entier("capacite", _champ(c, "capacite")),
            ordre=_entier("ordre", c.get("ordre", i)),
        )
        for i, c in enumerate(data.get("categories", []))
    )
    options = {}
    if "duree_minutes" in data:
        options["durée"] = timedelta(minutes=_entier("duree_minutes", data["duree_minutes"]))
    cmd = commands.PublierÉvénement(
        id=_champ(data, "id"),
        titre=_champ(data, "titre"),
        type=_enum(TypeÉvénement, _champ(data, "type")),
        début=_date(_champ(data, "debut")),
        catégories=catégories,
        **options,
    )
    get_bus().handle(cmd)
    return jsonify({"evenement_id": cmd.id}), 201


@app.route("/evenements/<evenement_id>", methods=["GET"])
def evenement_endpoint(evenement_id: str):
    bus = get_bus()
    résultat = views.statut_événement(evenement_id, bus.uow, bus.dependencies["horloge"]())
    if résultat is None:
        return jsonify({"message": "not found"}), 404
    return jsonify(résultat), 200


@app.route("/evenements/<evenement_id>", methods=["DELETE"])
def supprimer_evenement_endpoint(evenement_id: str):
    get_bus().handle(commands.SupprimerÉvénement(événement_id=evenement_id))
    return "", 204


@app.route("/evenements/<evenement_id>/annulation", methods=["POST"])
def annuler_evenement_endpoint(evenement_id: str):
    """Annulation par l'organisateur : toutes les réservations sont remboursées."""
    [résultats] = get_bus().handle(commands.AnnulerÉvénement(événement_id=evenement_id))
    return jsonify([_annulation_json(r) for r in résultats]), 200


@app.route("/evenements/<evenement_id>/disponibilites", methods=["GET"])
def disponibilites_endpoint(evenement_id: str):
    return jsonify(views.disponibilités(evenement_id, get_bus().uow)), 200


# --- Réservations ---


@app.route("/reservations", methods=["POST"])
def reserver_endpoint():
    """
    POST /reservations
    Body JSON : { evenement_id, categorie_id, quantite, client_id }

    Retourne l'identifiant de la réservation, en attente de paiement.
    """
    data = request.get_json()
    cmd = commands.Réserver(
        événement_id=_champ(data, "evenement_id"),
        catégorie_id=_champ(data, "categorie_id"),
        quantité=_entier("quantite", _champ(data, "quantite")),
        client_id=_champ(data, "client_id"),
    )
    [réservation_id] = get_bus().handle(cmd)
    return jsonify({"reservation_id": réservation_id}), 201


@app.route("/reservations/<reservation_id>", methods=["GET"])
def reservation_endpoint(reservation_id: str):
    résultat = views.réservation(reservation_id, get_bus().uow)
    if résultat is None:
        return jsonify({"message": "not found"}), 404
    return jsonify(résultat), 200


@app.route("/reservations/<reservation_id>/paiement", methods=["POST"])
def payer_endpoint(reservation_id: str):
    """
    POST /reservations/<id>/paiement
    Body JSON : { methode, jeton? }

    200 si le paiement est accepté, 402 s'il est refusé
    (la réservation reste en attente et peut être payée à nouveau).
    """
    data = request.get_json()
    cmd = commands.Payer(
        réservation_id=reservation_id,
        méthode=_enum(MéthodePaiement, _champ(data, "methode")),
        jeton_paiement=data.get("jeton"),
    )
    [résultat] = get_bus().handle(cmd)
    corps = {
        "reservation_id": résultat.réservation_id,
        "statut": résultat.statut_réservation.name,
        "statut_paiement": résultat.statut_paiement.name,
        "message": résultat.message,
    }
    return jsonify(corps), 200 if résultat.succès else 402


@app.route("/reservations/<reservation_id>/annulation", methods=["POST"])
def annuler_endpoint(reservation_id: str):
    data = request.get_json(silent=True) or {}
    cmd = commands.Annuler(réservation_id=reservation_id, client_id=data.get("client_id"))
    [résultat] = get_bus().handle(cmd)
    return jsonify(_annulation_json(résultat)), 200


@app.route("/reservations/<reservation_id>/remboursement", methods=["POST"])
def relancer_remboursement_endpoint(reservation_id: str):
    [résultat] = get_bus().handle(commands.RelancerRemboursement(réservation_id=reservation_id))
    return jsonify(_annulation_json(résultat)), 200


@app.route("/clients/<client_id>/reservations", methods=["GET"])
def reservations_client_endpoint(client_id: str):
    return jsonify(views.réservations_client(client_id, get_bus().uow)), 200


@app.route("/maintenance/blocages-expires", methods=["POST"])
def liberer_blocages_endpoint():
    [libérés] = get_bus().handle(commands.LibérerBlocagesExpirés())
    return jsonify({"liberes": libérés}), 200
