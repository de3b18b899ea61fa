"""
Handlers pour les commands et events.

Les command handlers orchestrent le cycle de vie d'une réservation :
réserver (bloquer des places), payer (débiter puis confirmer),
annuler (politique, libération, remboursement), annuler un événement.

Règles de concurrence :
- toute mutation du registre d'une catégorie se fait sous le verrou
  de cette catégorie, dans un seul Unit of Work ;
- payer et annuler une même réservation sont exclusifs (verrou de
  réservation, non bloquant : le perdant reçoit ConflitÉtat) ;
- aucun verrou de catégorie n'est gardé pendant un appel à la passerelle ;
  l'état est revérifié au retour.

Dépendances injectées par le message bus : uow, passerelle, verrous,
paramètres, horloge.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from billetterie.domain import commands, events
from billetterie.domain.cancellation import exiger_autorisation, peut_annuler
from billetterie.domain.errors import (
    AnnulationRefusée,
    CapacitéDépassée,
    Complet,
    ConflitÉtat,
    ErreurBilletterie,
    Introuvable,
    PasserelleIndisponible,
    RègleMétier,
)
from billetterie.domain.inventory import CatégorieBillets
from billetterie.domain.model import (
    Réservation,
    StatutPaiement,
    StatutRéservation,
    Événement,
)
from billetterie.service_layer.locks import clé_catégorie, clé_réservation

if TYPE_CHECKING:
    from billetterie.adapters.payments import AbstractPasserelle, RésultatPasserelle
    from billetterie.config import Paramètres
    from billetterie.service_layer.locks import Verrous
    from billetterie.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Horloge = Callable[[], datetime]


@dataclass(frozen=True)
class RésultatPaiement:
    réservation_id: str
    succès: bool
    statut_réservation: StatutRéservation
    statut_paiement: StatutPaiement
    message: Optional[str] = None


@dataclass(frozen=True)
class RésultatAnnulation:
    réservation_id: str
    remboursable: bool
    remboursé: bool = False
    remboursement_en_attente: bool = False
    message: Optional[str] = None


def _charger_réservation(uow: AbstractUnitOfWork, réservation_id: str) -> Réservation:
    réservation = uow.réservations.get(réservation_id)
    if réservation is None:
        raise Introuvable("Réservation", réservation_id)
    return réservation


def _charger_événement(uow: AbstractUnitOfWork, événement_id: str) -> Événement:
    événement = uow.événements.get(événement_id)
    if événement is None:
        raise Introuvable("Événement", événement_id)
    return événement


def _charger_catégorie(uow: AbstractUnitOfWork, catégorie_id: str) -> CatégorieBillets:
    catégorie = uow.catégories.get(catégorie_id)
    if catégorie is None:
        raise Introuvable("Catégorie", catégorie_id)
    return catégorie


# --- Événements (organisateur) ---


def publier_événement(
    cmd: commands.PublierÉvénement,
    uow: AbstractUnitOfWork,
    horloge: Horloge,
) -> str:
    """Crée un événement et ses catégories de billets."""
    catégories = [
        CatégorieBillets(
            id=c.id,
            libellé=c.libellé,
            prix_unitaire=c.prix_unitaire,
            capacité=c.capacité,
            ordre=c.ordre,
        )
        for c in cmd.catégories
    ]
    événement = Événement(
        id=cmd.id,
        titre=cmd.titre,
        type=cmd.type,
        début=cmd.début,
        catégories=catégories,
        durée=cmd.durée,
    )
    événement.vérifier_publiable(horloge())
    with uow:
        if uow.événements.get(cmd.id) is not None:
            raise ConflitÉtat(f"L'événement {cmd.id} existe déjà")
        for catégorie in catégories:
            if uow.catégories.get(catégorie.id) is not None:
                raise ConflitÉtat(f"La catégorie {catégorie.id} existe déjà")
        uow.événements.add(événement)
        uow.commit()
    logger.info("Événement publié : %s (%d places)", cmd.id, événement.capacité_totale)
    return cmd.id


def supprimer_événement(
    cmd: commands.SupprimerÉvénement,
    uow: AbstractUnitOfWork,
) -> None:
    """Suppression logique : l'événement n'accepte plus de réservation."""
    with uow:
        événement = _charger_événement(uow, cmd.événement_id)
        événement.supprimer()
        uow.commit()
    logger.info("Événement supprimé : %s", cmd.événement_id)


def annuler_événement(
    cmd: commands.AnnulerÉvénement,
    uow: AbstractUnitOfWork,
    passerelle: AbstractPasserelle,
    verrous: Verrous,
    paramètres: Paramètres,
    horloge: Horloge,
) -> list[RésultatAnnulation]:
    """
    Annulation par l'organisateur.

    L'événement est marqué annulé sous les verrous de toutes ses
    catégories : une réservation concurrente est donc soit déjà
    enregistrée (et sera annulée ci-dessous), soit refusée.
    Chaque réservation active est ensuite annulée et remboursée,
    quel que soit le délai restant.
    """
    maintenant = horloge()
    with uow:
        événement = _charger_événement(uow, cmd.événement_id)
        clés = [clé_catégorie(c.id) for c in événement.catégories]

    with verrous.plusieurs(clés):
        with uow:
            événement = _charger_événement(uow, cmd.événement_id)
            événement.annuler(maintenant)
            uow.commit()

    with uow:
        à_annuler = [
            r.id
            for r in uow.réservations.lister_par_événement(cmd.événement_id)
            if r.statut is not StatutRéservation.ANNULEE
        ]

    résultats = []
    for réservation_id in à_annuler:
        with verrous.verrou(clé_réservation(réservation_id)):
            try:
                résultats.append(
                    _annuler_réservation(
                        réservation_id, maintenant, uow, passerelle, verrous,
                        paramètres, horloge,
                    )
                )
            except AnnulationRefusée:
                logger.info("Réservation %s déjà annulée entre-temps", réservation_id)
    return résultats


# --- Réservation ---


def réserver(
    cmd: commands.Réserver,
    uow: AbstractUnitOfWork,
    verrous: Verrous,
    paramètres: Paramètres,
    horloge: Horloge,
) -> str:
    """
    Bloque `quantité` places et crée la réservation et son paiement
    en attente, en une seule transaction.

    Retourne l'identifiant de la réservation. Lève Complet si la
    catégorie ne peut plus accueillir la demande.
    """
    if not 0 < cmd.quantité <= paramètres.max_billets_par_reservation:
        raise RègleMétier(
            f"La quantité doit être comprise entre 1 et {paramètres.max_billets_par_reservation}"
        )
    réservation_id = cmd.id or f"res-{uuid.uuid4().hex[:12]}"
    maintenant = horloge()

    with verrous.verrou(clé_catégorie(cmd.catégorie_id)):
        with uow:
            événement = _charger_événement(uow, cmd.événement_id)
            événement.vérifier_réservable(maintenant, paramètres.fermeture_reservations)
            catégorie = événement.catégorie(cmd.catégorie_id)
            if uow.réservations.get(réservation_id) is not None:
                raise ConflitÉtat(f"La réservation {réservation_id} existe déjà")

            _expirer_blocages(catégorie, uow, verrous, maintenant)
            try:
                catégorie.bloquer(
                    réservation_id, cmd.quantité, maintenant + paramètres.duree_blocage
                )
            except CapacitéDépassée as exc:
                raise Complet(exc.catégorie_id, exc.demandée, exc.disponible) from exc

            uow.réservations.add(
                Réservation.ouvrir(
                    id=réservation_id,
                    client_id=cmd.client_id,
                    événement_id=événement.id,
                    catégorie=catégorie,
                    quantité=cmd.quantité,
                    maintenant=maintenant,
                )
            )
            uow.commit()
    return réservation_id


def payer(
    cmd: commands.Payer,
    uow: AbstractUnitOfWork,
    passerelle: AbstractPasserelle,
    verrous: Verrous,
    horloge: Horloge,
) -> RésultatPaiement:
    """
    Débite la réservation et la confirme.

    1. Vérification : la réservation doit être en attente, jamais payée,
       et son blocage ne doit pas avoir expiré.
    2. Débit auprès de la passerelle, hors de tout verrou de catégorie.
       PasserelleIndisponible remonte sans rien modifier : la même clé
       d'idempotence sera réutilisée au prochain essai.
    3. Application du résultat après revérification de l'état :
       succès -> blocage confirmé, paiement REUSSI, réservation CONFIRMEE ;
       refus -> paiement ECHOUE, réservation en attente, places toujours bloquées.
       Si l'état a changé entre-temps, un débit réussi est remboursé.
    """
    with verrous.verrou(clé_réservation(cmd.réservation_id), bloquant=False):
        maintenant = horloge()
        with uow:
            réservation = _charger_réservation(uow, cmd.réservation_id)
            réservation.vérifier_payable()
            catégorie = _charger_catégorie(uow, réservation.catégorie_id)
            blocage_expiré = réservation.jeton in catégorie.blocages_expirés(maintenant)
            version = réservation.numéro_version
            montant = réservation.paiement.montant
            clé_idempotence = réservation.paiement.clé_idempotence
            catégorie_id = réservation.catégorie_id

        if blocage_expiré:
            _expirer_réservation(cmd.réservation_id, catégorie_id, uow, verrous, maintenant)
            raise ConflitÉtat(
                f"Le délai de paiement de la réservation {cmd.réservation_id} est dépassé"
            )

        résultat = passerelle.débiter(
            montant, cmd.méthode, clé_idempotence, cmd.jeton_paiement
        )

        try:
            return _appliquer_résultat_paiement(
                cmd, résultat, version, catégorie_id, uow, verrous, horloge()
            )
        except ErreurBilletterie as exc:
            if résultat.succès:
                if not exc.visible:
                    logger.error("Incohérence après débit de %s : %s", cmd.réservation_id, exc)
                _compenser_débit(passerelle, cmd.réservation_id, résultat, montant)
            raise


def _appliquer_résultat_paiement(
    cmd: commands.Payer,
    résultat: RésultatPasserelle,
    version: int,
    catégorie_id: str,
    uow: AbstractUnitOfWork,
    verrous: Verrous,
    maintenant: datetime,
) -> RésultatPaiement:
    with verrous.verrou(clé_catégorie(catégorie_id)):
        with uow:
            réservation = _charger_réservation(uow, cmd.réservation_id)
            if réservation.numéro_version != version:
                raise ConflitÉtat(
                    f"La réservation {cmd.réservation_id} a été modifiée pendant le paiement"
                )
            if résultat.succès:
                catégorie = _charger_catégorie(uow, catégorie_id)
                catégorie.confirmer(réservation.jeton)
                réservation.confirmer_paiement(
                    cmd.méthode, résultat.référence_transaction, maintenant
                )
            else:
                réservation.enregistrer_échec_paiement(cmd.méthode, résultat.message)
            uow.commit()
            return RésultatPaiement(
                réservation_id=réservation.id,
                succès=résultat.succès,
                statut_réservation=réservation.statut,
                statut_paiement=réservation.paiement.statut,
                message=résultat.message,
            )


def _compenser_débit(
    passerelle: AbstractPasserelle,
    réservation_id: str,
    résultat: RésultatPasserelle,
    montant,
) -> None:
    """Rembourse un débit qui n'a pas pu être enregistré."""
    try:
        remboursement = passerelle.rembourser(résultat.référence_transaction, montant)
    except PasserelleIndisponible:
        remboursement = None
    if remboursement is None or not remboursement.succès:
        logger.error(
            "Débit %s de la réservation %s non enregistré et non remboursé",
            résultat.référence_transaction, réservation_id,
        )
    else:
        logger.warning(
            "Débit %s de la réservation %s remboursé (état modifié pendant le paiement)",
            résultat.référence_transaction, réservation_id,
        )


def _expirer_réservation(
    réservation_id: str,
    catégorie_id: str,
    uow: AbstractUnitOfWork,
    verrous: Verrous,
    maintenant: datetime,
) -> None:
    """Libère le blocage expiré d'une réservation dont on détient déjà le verrou."""
    with verrous.verrou(clé_catégorie(catégorie_id)):
        with uow:
            catégorie = _charger_catégorie(uow, catégorie_id)
            réservation = _charger_réservation(uow, réservation_id)
            if réservation.jeton in catégorie.blocages_expirés(maintenant):
                catégorie.libérer(réservation.jeton)
                réservation.expirer(maintenant)
                uow.commit()


def _expirer_blocages(
    catégorie: CatégorieBillets,
    uow: AbstractUnitOfWork,
    verrous: Verrous,
    maintenant: datetime,
) -> int:
    """
    Libère les blocages expirés d'une catégorie dont on détient le verrou.

    Une réservation en cours de paiement ou d'annulation (verrou pris)
    est laissée de côté ; le commit revient à l'appelant.
    """
    libérés = 0
    for jeton in catégorie.blocages_expirés(maintenant):
        try:
            with verrous.verrou(clé_réservation(jeton.référence), bloquant=False):
                catégorie.libérer(jeton)
                réservation = uow.réservations.get(jeton.référence)
                if réservation is not None and réservation.statut is StatutRéservation.EN_ATTENTE:
                    réservation.expirer(maintenant)
                libérés += 1
        except ConflitÉtat:
            logger.debug("Réservation %s occupée, blocage conservé", jeton.référence)
    return libérés


def libérer_blocages_expirés(
    cmd: commands.LibérerBlocagesExpirés,
    uow: AbstractUnitOfWork,
    verrous: Verrous,
    horloge: Horloge,
) -> int:
    """Balayage périodique : rend au stock les places des paiements abandonnés."""
    maintenant = horloge()
    with uow:
        catégorie_ids = uow.catégories.avec_blocages_expirés(maintenant)

    total = 0
    for catégorie_id in catégorie_ids:
        with verrous.verrou(clé_catégorie(catégorie_id)):
            with uow:
                catégorie = _charger_catégorie(uow, catégorie_id)
                libérés = _expirer_blocages(catégorie, uow, verrous, maintenant)
                uow.commit()
        total += libérés
    if total:
        logger.info("%d blocage(s) expiré(s) libéré(s)", total)
    return total


# --- Annulation ---


def annuler(
    cmd: commands.Annuler,
    uow: AbstractUnitOfWork,
    passerelle: AbstractPasserelle,
    verrous: Verrous,
    paramètres: Paramètres,
    horloge: Horloge,
) -> RésultatAnnulation:
    """
    Annulation par le client.

    Refus (AnnulationTardive, AnnulationRefusée) : rien n'est modifié.
    Sinon les places sont libérées, la réservation passe à ANNULEE
    et le paiement est remboursé s'il avait réussi.
    """
    maintenant = cmd.maintenant or horloge()
    with verrous.verrou(clé_réservation(cmd.réservation_id), bloquant=False):
        return _annuler_réservation(
            cmd.réservation_id, maintenant, uow, passerelle, verrous,
            paramètres, horloge, client_id=cmd.client_id,
        )


def _annuler_réservation(
    réservation_id: str,
    maintenant: datetime,
    uow: AbstractUnitOfWork,
    passerelle: AbstractPasserelle,
    verrous: Verrous,
    paramètres: Paramètres,
    horloge: Horloge,
    client_id: Optional[str] = None,
) -> RésultatAnnulation:
    with uow:
        catégorie_id = _charger_réservation(uow, réservation_id).catégorie_id

    with verrous.verrou(clé_catégorie(catégorie_id)):
        with uow:
            réservation = _charger_réservation(uow, réservation_id)
            if client_id is not None and réservation.client_id != client_id:
                raise AnnulationRefusée("seul le titulaire de la réservation peut l'annuler")
            événement = _charger_événement(uow, réservation.événement_id)
            autorisation = exiger_autorisation(
                peut_annuler(
                    événement, réservation, réservation.paiement, maintenant,
                    paramètres.delai_annulation,
                )
            )
            catégorie = _charger_catégorie(uow, catégorie_id)
            catégorie.libérer(réservation.jeton)
            réservation.annuler(maintenant, autorisation.remboursable)
            uow.commit()

    if not autorisation.remboursable:
        return RésultatAnnulation(réservation_id=réservation_id, remboursable=False)
    return _rembourser(réservation_id, uow, passerelle, horloge)


def _rembourser(
    réservation_id: str,
    uow: AbstractUnitOfWork,
    passerelle: AbstractPasserelle,
    horloge: Horloge,
) -> RésultatAnnulation:
    """
    Rembourse une réservation annulée. Un échec ne remet pas en cause
    l'annulation : le paiement reste REUSSI, marqué « remboursement en
    attente », pour une relance ultérieure.
    """
    with uow:
        paiement = _charger_réservation(uow, réservation_id).paiement
        if not paiement.remboursement_en_attente:
            raise ConflitÉtat(f"Aucun remboursement en attente pour {réservation_id}")
        référence, montant = paiement.référence_transaction, paiement.montant

    try:
        résultat = passerelle.rembourser(référence, montant)
        motif = résultat.message or "remboursement refusé"
    except PasserelleIndisponible as exc:
        résultat = None
        motif = exc.message

    with uow:
        réservation = _charger_réservation(uow, réservation_id)
        if résultat is not None and résultat.succès:
            réservation.enregistrer_remboursement(horloge())
        else:
            réservation.signaler_remboursement_en_souffrance(motif)
        uow.commit()
        remboursé = réservation.paiement.statut is StatutPaiement.REMBOURSE

    return RésultatAnnulation(
        réservation_id=réservation_id,
        remboursable=True,
        remboursé=remboursé,
        remboursement_en_attente=not remboursé,
        message=None if remboursé else motif,
    )


def relancer_remboursement(
    cmd: commands.RelancerRemboursement,
    uow: AbstractUnitOfWork,
    passerelle: AbstractPasserelle,
    verrous: Verrous,
    horloge: Horloge,
) -> RésultatAnnulation:
    """Nouvel essai de remboursement pour une réservation annulée en souffrance."""
    with verrous.verrou(clé_réservation(cmd.réservation_id), bloquant=False):
        return _rembourser(cmd.réservation_id, uow, passerelle, horloge)


# --- Event Handlers ---


def publier_fait(event: events.Event) -> None:
    """
    Publie un fait du domaine vers l'extérieur.

    Dans un système complet, cela publierait vers un broker ;
    ici le fait est journalisé.
    """
    logger.info("Fait publié : %s", event)


def signaler_remboursement_en_souffrance(event: events.RemboursementEnSouffrance) -> None:
    logger.warning(
        "Remboursement en souffrance pour la réservation %s (%s €) : %s",
        event.réservation_id, event.montant, event.motif,
    )
