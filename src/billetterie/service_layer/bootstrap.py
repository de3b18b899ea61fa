"""
Bootstrap : assemblage de l'application (Composition Root).

Ce module construit le message bus avec toutes ses dépendances :
paramètres, Unit of Work, passerelle de paiement, verrous et horloge.
C'est le seul endroit qui connaît les implémentations concrètes ;
les tests y injectent leurs fakes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from billetterie.adapters import orm, payments
from billetterie.config import Paramètres
from billetterie.domain import commands, events
from billetterie.service_layer import handlers, locks, messagebus, unit_of_work

logger = logging.getLogger(__name__)


def maintenant_utc() -> datetime:
    return datetime.now(timezone.utc)


def créer_passerelle(paramètres: Paramètres) -> payments.AbstractPasserelle:
    """Stripe si une clé est configurée, sinon passerelle simulée."""
    if paramètres.stripe.est_configuree:
        logger.info(
            "Passerelle Stripe initialisée (mode : %s)",
            "test" if paramètres.stripe.mode_test else "production",
        )
        return payments.PasserelleStripe(paramètres.stripe, devise=paramètres.devise)
    logger.warning("Stripe n'est pas configuré : paiements en mode simulation")
    return payments.PasserelleSimulée()


def bootstrap(
    start_orm: bool = True,
    paramètres: Optional[Paramètres] = None,
    uow: Optional[unit_of_work.AbstractUnitOfWork] = None,
    passerelle: Optional[payments.AbstractPasserelle] = None,
    verrous: Optional[locks.Verrous] = None,
    horloge: Callable[[], datetime] = maintenant_utc,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Construit et retourne un MessageBus configuré.

    En production, utilise les implémentations concrètes.
    En test, on injecte des fakes via les paramètres.
    """
    if paramètres is None:
        paramètres = Paramètres()

    if start_orm:
        orm.start_mappers()

    if uow is None:
        uow = unit_of_work.SqlAlchemyUnitOfWork(
            unit_of_work.créer_session_factory(paramètres.database_uri)
        )

    if passerelle is None:
        passerelle = créer_passerelle(paramètres)

    dependencies: dict[str, Any] = {
        "passerelle": passerelle,
        "verrous": verrous or locks.Verrous(),
        "paramètres": paramètres,
        "horloge": horloge,
        **extra_dependencies,
    }

    return messagebus.MessageBus(
        uow=uow,
        event_handlers=EVENT_HANDLERS,
        command_handlers=COMMAND_HANDLERS,
        dependencies=dependencies,
    )


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list] = {
    events.RéservationCréée: [handlers.publier_fait],
    events.RéservationConfirmée: [handlers.publier_fait],
    events.PaiementÉchoué: [handlers.publier_fait],
    events.RéservationAnnulée: [handlers.publier_fait],
    events.RemboursementEffectué: [handlers.publier_fait],
    events.RemboursementEnSouffrance: [
        handlers.publier_fait,
        handlers.signaler_remboursement_en_souffrance,
    ],
    events.BlocageExpiré: [handlers.publier_fait],
    events.ÉvénementAnnulé: [handlers.publier_fait],
}

COMMAND_HANDLERS: dict[type[commands.Command], Any] = {
    commands.PublierÉvénement: handlers.publier_événement,
    commands.SupprimerÉvénement: handlers.supprimer_événement,
    commands.AnnulerÉvénement: handlers.annuler_événement,
    commands.Réserver: handlers.réserver,
    commands.Payer: handlers.payer,
    commands.Annuler: handlers.annuler,
    commands.RelancerRemboursement: handlers.relancer_remboursement,
    commands.LibérerBlocagesExpirés: handlers.libérer_blocages_expirés,
}
