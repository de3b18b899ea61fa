"""
Adaptateurs de passerelle de paiement.

Le cœur de la billetterie ne connaît que AbstractPasserelle :
- débiter() avec une clé d'idempotence, pour qu'un nouvel essai après
  une panne transitoire ne débite jamais deux fois ;
- rembourser() une transaction réussie ;
- statut() d'une transaction.

Un refus (carte refusée...) est un résultat normal : succès=False.
Une panne (réseau, limite de débit, erreur du fournisseur) lève
PasserelleIndisponible : l'appelant peut réessayer plus tard.

Deux implémentations :
- PasserelleStripe, via le SDK officiel `stripe` ;
- PasserelleSimulée, utilisée quand Stripe n'est pas configuré.

Les numéros des cartes de test Stripe sont traduits en moyens de
paiement (pm_card_...) par les deux passerelles, via la même table.
"""

from __future__ import annotations

import abc
import logging
import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

import stripe

from billetterie.config import ParamètresStripe
from billetterie.domain.errors import PasserelleIndisponible, RègleMétier
from billetterie.domain.model import MéthodePaiement

logger = logging.getLogger(__name__)


class StatutTransaction(Enum):
    EN_ATTENTE = "pending"
    REUSSIE = "succeeded"
    ECHOUEE = "failed"


@dataclass(frozen=True)
class RésultatPasserelle:
    succès: bool
    référence_transaction: Optional[str] = None
    message: Optional[str] = None


class AbstractPasserelle(abc.ABC):
    @abc.abstractmethod
    def débiter(
        self,
        montant: Decimal,
        méthode: MéthodePaiement,
        clé_idempotence: str,
        jeton: Optional[str] = None,
    ) -> RésultatPasserelle:
        raise NotImplementedError

    @abc.abstractmethod
    def rembourser(self, référence_transaction: str, montant: Decimal) -> RésultatPasserelle:
        raise NotImplementedError

    @abc.abstractmethod
    def statut(self, référence_transaction: str) -> StatutTransaction:
        raise NotImplementedError


def en_unités_mineures(montant: Decimal, devise: str) -> int:
    """Stripe attend des montants dans la plus petite unité de la devise."""
    exposant = 0 if devise.upper() in {"JPY", "KRW"} else 2
    return int((montant * (Decimal(10) ** exposant)).to_integral_value())


CARTES_DE_TEST = {
    "4242424242424242": "pm_card_visa",
    "4000000000000002": "pm_card_chargeDeclined",
    "4000000000000069": "pm_card_expired",
    "5555555555554444": "pm_card_mastercard",
}

# Moyens de test que Stripe refuse, avec le motif renvoyé par la simulation.
MOYENS_REFUSÉS = {
    "pm_card_chargeDeclined": "Carte refusée",
    "pm_card_expired": "Carte expirée",
}


def moyen_de_paiement(jeton: str) -> str:
    """Numéro de carte de test -> moyen de paiement Stripe ; tout autre jeton est inchangé."""
    return CARTES_DE_TEST.get(jeton.replace(" ", ""), jeton)


ERREURS_TRANSITOIRES = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


class PasserelleStripe(AbstractPasserelle):
    """
    PaymentIntents Stripe, confirmés immédiatement.

    La clé d'idempotence de la billetterie est transmise telle quelle
    à Stripe, qui renvoie le même PaymentIntent si la requête est rejouée.
    En mode test, un débit sans jeton utilise `moyen_de_paiement_test` ;
    en production, le jeton du client est obligatoire.
    """

    def __init__(self, paramètres: ParamètresStripe, devise: str = "eur"):
        self.paramètres = paramètres
        self.devise = devise

    def _moyen(self, jeton: Optional[str]) -> str:
        if jeton:
            return moyen_de_paiement(jeton)
        if self.paramètres.mode_test:
            return self.paramètres.moyen_de_paiement_test
        raise RègleMétier("Un moyen de paiement est obligatoire en mode production")

    def débiter(
        self,
        montant: Decimal,
        méthode: MéthodePaiement,
        clé_idempotence: str,
        jeton: Optional[str] = None,
    ) -> RésultatPasserelle:
        moyen = self._moyen(jeton)
        try:
            intention = stripe.PaymentIntent.create(
                api_key=self.paramètres.cle_secrete,
                amount=en_unités_mineures(montant, self.devise),
                currency=self.devise.lower(),
                payment_method=moyen,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"cle_idempotence": clé_idempotence, "methode": méthode.name},
                idempotency_key=clé_idempotence,
            )
        except stripe.CardError as exc:
            logger.info("Paiement refusé par Stripe (%s) : %s", clé_idempotence, exc.user_message)
            return RésultatPasserelle(succès=False, message=exc.user_message or str(exc))
        except ERREURS_TRANSITOIRES as exc:
            raise PasserelleIndisponible(f"Stripe indisponible : {exc}") from exc
        except stripe.AuthenticationError as exc:
            logger.error("Clé Stripe refusée (%s) : %s", clé_idempotence, exc)
            return RésultatPasserelle(succès=False, message="Passerelle de paiement mal configurée")
        except stripe.StripeError as exc:
            logger.warning("Requête Stripe rejetée (%s) : %s", clé_idempotence, exc)
            return RésultatPasserelle(succès=False, message=str(exc))

        if intention["status"] != "succeeded":
            return RésultatPasserelle(
                succès=False,
                référence_transaction=intention["id"],
                message=f"Paiement non abouti (statut Stripe : {intention['status']})",
            )
        return RésultatPasserelle(succès=True, référence_transaction=intention["id"])

    def rembourser(self, référence_transaction: str, montant: Decimal) -> RésultatPasserelle:
        try:
            remboursement = stripe.Refund.create(
                api_key=self.paramètres.cle_secrete,
                payment_intent=référence_transaction,
                amount=en_unités_mineures(montant, self.devise),
                idempotency_key=f"remboursement-{référence_transaction}",
            )
        except ERREURS_TRANSITOIRES as exc:
            raise PasserelleIndisponible(f"Stripe indisponible : {exc}") from exc
        except stripe.StripeError as exc:
            return RésultatPasserelle(succès=False, message=str(exc))

        réussi = remboursement["status"] in ("succeeded", "pending")
        return RésultatPasserelle(
            succès=réussi,
            référence_transaction=remboursement["id"],
            message=None if réussi else f"Remboursement {remboursement['status']}",
        )

    def statut(self, référence_transaction: str) -> StatutTransaction:
        try:
            intention = stripe.PaymentIntent.retrieve(
                référence_transaction, api_key=self.paramètres.cle_secrete
            )
        except ERREURS_TRANSITOIRES as exc:
            raise PasserelleIndisponible(f"Stripe indisponible : {exc}") from exc
        except stripe.StripeError as exc:
            logger.warning("Statut Stripe illisible pour %s : %s", référence_transaction, exc)
            return StatutTransaction.ECHOUEE
        if intention["status"] == "succeeded":
            return StatutTransaction.REUSSIE
        if intention["status"] in ("canceled", "requires_payment_method"):
            return StatutTransaction.ECHOUEE
        return StatutTransaction.EN_ATTENTE


class PasserelleSimulée(AbstractPasserelle):
    """
    Passerelle en mémoire, utilisée en l'absence de clé Stripe.

    Les cartes de test refusées ou expirées sont refusées, tout le reste
    est accepté. Une même clé d'idempotence renvoie toujours le même
    résultat, et un remboursement rejoué renvoie le premier remboursement.
    """

    def __init__(self) -> None:
        self._verrou = threading.Lock()
        self._par_clé: dict[str, RésultatPasserelle] = {}
        self._transactions: dict[str, StatutTransaction] = {}
        self._remboursements: dict[str, RésultatPasserelle] = {}

    def débiter(
        self,
        montant: Decimal,
        méthode: MéthodePaiement,
        clé_idempotence: str,
        jeton: Optional[str] = None,
    ) -> RésultatPasserelle:
        with self._verrou:
            if clé_idempotence in self._par_clé:
                return self._par_clé[clé_idempotence]
            référence = f"sim_{uuid.uuid4().hex[:16]}"
            motif = MOYENS_REFUSÉS.get(moyen_de_paiement(jeton)) if jeton else None
            if motif:
                résultat = RésultatPasserelle(False, référence, motif)
                self._transactions[référence] = StatutTransaction.ECHOUEE
            else:
                résultat = RésultatPasserelle(True, référence)
                self._transactions[référence] = StatutTransaction.REUSSIE
            self._par_clé[clé_idempotence] = résultat
            return résultat

    def rembourser(self, référence_transaction: str, montant: Decimal) -> RésultatPasserelle:
        with self._verrou:
            if référence_transaction in self._remboursements:
                return self._remboursements[référence_transaction]
            if self._transactions.get(référence_transaction) is not StatutTransaction.REUSSIE:
                return RésultatPasserelle(False, référence_transaction, "Transaction inconnue")
            résultat = RésultatPasserelle(True, f"re_{référence_transaction}")
            self._remboursements[référence_transaction] = résultat
            return résultat

    def statut(self, référence_transaction: str) -> StatutTransaction:
        with self._verrou:
            return self._transactions.get(référence_transaction, StatutTransaction.EN_ATTENTE)
