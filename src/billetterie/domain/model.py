"""
Modèle de domaine de la billetterie.

Deux agrégats :
- Événement, qui possède ses catégories de billets (et donc le registre
  d'inventaire, voir inventory.py) ;
- Réservation, qui possède son Paiement (relation 1:1, chargés et
  enregistrés ensemble).

Une réservation ne référence l'événement et la catégorie que par
identifiant : l'inventaire ne connaît que les quantités bloquées.

Les statuts sont des Enum ; chaque transition passe par une table
de transitions autorisées, toute autre transition lève ConflitÉtat.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from billetterie.domain import events
from billetterie.domain.errors import ConflitÉtat, Introuvable, RègleMétier
from billetterie.domain.inventory import CatégorieBillets, JetonBlocage

DURÉE_PAR_DÉFAUT = timedelta(hours=3)


def en_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Ramène une date en UTC ; une date naïve est considérée comme UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# --- Énumérations ---


class TypeÉvénement(Enum):
    CONCERT = "Concert"
    SPECTACLE = "Spectacle"
    CONFERENCE = "Conférence"


class ÉtatÉvénement(Enum):
    """Cycle de vie technique : un événement supprimé reste en base."""

    ACTIF = 1
    SUPPRIME = 0


class StatutÉvénement(Enum):
    """Statut affiché, dérivé de l'heure courante et du drapeau d'annulation."""

    A_VENIR = "À venir"
    EN_COURS = "En cours"
    TERMINE = "Terminé"
    ANNULE = "Annulé"


class StatutRéservation(Enum):
    EN_ATTENTE = "En attente"
    CONFIRMEE = "Confirmée"
    ANNULEE = "Annulée"


class StatutPaiement(Enum):
    EN_ATTENTE = "En attente"
    REUSSI = "Réussi"
    ECHOUE = "Échoué"
    REMBOURSE = "Remboursé"


class MéthodePaiement(Enum):
    CARTE_CREDIT = "Carte de crédit"
    CARTE_DEBIT = "Carte de débit"
    PAYPAL = "PayPal"
    STRIPE = "Stripe"
    VIREMENT = "Virement bancaire"
    ESPECES = "Espèces"


TRANSITIONS_RÉSERVATION: dict[StatutRéservation, set[StatutRéservation]] = {
    StatutRéservation.EN_ATTENTE: {StatutRéservation.CONFIRMEE, StatutRéservation.ANNULEE},
    StatutRéservation.CONFIRMEE: {StatutRéservation.ANNULEE},
    StatutRéservation.ANNULEE: set(),
}

# ECHOUE -> ECHOUE : plusieurs tentatives refusées d'affilée.
TRANSITIONS_PAIEMENT: dict[StatutPaiement, set[StatutPaiement]] = {
    StatutPaiement.EN_ATTENTE: {StatutPaiement.REUSSI, StatutPaiement.ECHOUE},
    StatutPaiement.ECHOUE: {StatutPaiement.REUSSI, StatutPaiement.ECHOUE},
    StatutPaiement.REUSSI: {StatutPaiement.REMBOURSE},
    StatutPaiement.REMBOURSE: set(),
}


def statut_affiché(
    début: datetime, durée: timedelta, annulé: bool, maintenant: datetime
) -> StatutÉvénement:
    if annulé:
        return StatutÉvénement.ANNULE
    if maintenant < début:
        return StatutÉvénement.A_VENIR
    if maintenant < début + durée:
        return StatutÉvénement.EN_COURS
    return StatutÉvénement.TERMINE


# --- Agrégat Événement ---


class Événement:
    """
    Agrégat racine : un événement et ses catégories de billets.

    L'état (ACTIF / SUPPRIME) et le drapeau `annulé` sont stockés ;
    le statut affiché (à venir, en cours, terminé, annulé) est calculé.
    """

    def __init__(
        self,
        id: str,
        titre: str,
        type: TypeÉvénement,
        début: datetime,
        catégories: Optional[list[CatégorieBillets]] = None,
        durée: timedelta = DURÉE_PAR_DÉFAUT,
        état: ÉtatÉvénement = ÉtatÉvénement.ACTIF,
        annulé: bool = False,
        numéro_version: int = 0,
    ):
        self.id = id
        self.titre = titre
        self.type = type
        self.début = en_utc(début)
        self.durée = durée
        self.état = état
        self.annulé = annulé
        self.catégories = sorted(catégories or [], key=lambda c: c.ordre)
        for catégorie in self.catégories:
            catégorie.événement_id = id
        self.numéro_version = numéro_version
        self.faits: list[events.Event] = []

    def __repr__(self) -> str:
        return f"<Événement {self.id}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Événement):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def statut(self, maintenant: datetime) -> StatutÉvénement:
        return statut_affiché(self.début, self.durée, self.annulé, maintenant)

    @property
    def capacité_totale(self) -> int:
        return sum(c.capacité for c in self.catégories)

    def catégorie(self, catégorie_id: str) -> CatégorieBillets:
        try:
            return next(c for c in self.catégories if c.id == catégorie_id)
        except StopIteration:
            raise Introuvable("Catégorie", catégorie_id) from None

    def vérifier_publiable(self, maintenant: datetime) -> None:
        """Contrôles de saisie d'un nouvel événement."""
        if not self.titre or not self.titre.strip():
            raise RègleMétier("Le titre de l'événement est obligatoire")
        if self.début < maintenant:
            raise RègleMétier("La date de l'événement ne peut pas être dans le passé")
        if not self.catégories:
            raise RègleMétier("Un événement doit proposer au moins une catégorie de billets")
        for catégorie in self.catégories:
            if catégorie.capacité < 0:
                raise RègleMétier(f"Capacité négative pour la catégorie {catégorie.id}")
            if catégorie.prix_unitaire < 0:
                raise RègleMétier(f"Prix négatif pour la catégorie {catégorie.id}")
        if self.capacité_totale <= 0:
            raise RègleMétier("La capacité totale doit être supérieure à 0")

    def vérifier_réservable(self, maintenant: datetime, fermeture: timedelta) -> None:
        """
        Un événement n'accepte de réservation que s'il est actif,
        non annulé, et que les réservations ne sont pas encore fermées
        (`fermeture` avant le début).
        """
        if self.état is ÉtatÉvénement.SUPPRIME:
            raise RègleMétier(f"L'événement {self.id} a été supprimé")
        if self.annulé:
            raise RègleMétier(f"L'événement {self.id} est annulé")
        if maintenant >= self.début:
            raise RègleMétier(f"L'événement {self.id} a déjà commencé")
        if self.début - maintenant < fermeture:
            raise RègleMétier(f"Les réservations pour l'événement {self.id} sont fermées")

    def annuler(self, maintenant: datetime) -> bool:
        """
        Annulation par l'organisateur. Retourne False si l'événement
        était déjà annulé (aucun effet).
        """
        if self.annulé:
            return False
        if self.statut(maintenant) is StatutÉvénement.TERMINE:
            raise RègleMétier(f"L'événement {self.id} est terminé et ne peut plus être annulé")
        self.annulé = True
        self.numéro_version += 1
        self.faits.append(events.ÉvénementAnnulé(événement_id=self.id))
        return True

    def supprimer(self) -> None:
        if self.état is ÉtatÉvénement.SUPPRIME:
            return
        self.état = ÉtatÉvénement.SUPPRIME
        self.numéro_version += 1


# --- Agrégat Réservation ---


class Paiement:
    """
    Paiement d'une réservation (1:1).

    `tentatives` compte les refus définitifs de la passerelle. La clé
    d'idempotence en dépend : un nouvel essai après une panne
    transitoire réutilise la même clé, un nouvel essai après un refus
    en utilise une nouvelle.
    """

    def __init__(
        self,
        id: str,
        réservation_id: str,
        montant: Decimal,
        statut: StatutPaiement = StatutPaiement.EN_ATTENTE,
        méthode: Optional[MéthodePaiement] = None,
        référence_transaction: Optional[str] = None,
        tentatives: int = 0,
        remboursement_en_attente: bool = False,
        motif_échec: Optional[str] = None,
        payé_le: Optional[datetime] = None,
        remboursé_le: Optional[datetime] = None,
    ):
        self.id = id
        self.réservation_id = réservation_id
        self.montant = Decimal(montant)
        self.statut = statut
        self.méthode = méthode
        self.référence_transaction = référence_transaction
        self.tentatives = tentatives
        self.remboursement_en_attente = remboursement_en_attente
        self.motif_échec = motif_échec
        self.payé_le = payé_le
        self.remboursé_le = remboursé_le

    def __repr__(self) -> str:
        return f"<Paiement {self.id} {self.statut.name}>"

    @property
    def clé_idempotence(self) -> str:
        return f"{self.réservation_id}-{self.tentatives}"

    def _transition(self, cible: StatutPaiement) -> None:
        if cible not in TRANSITIONS_PAIEMENT[self.statut]:
            raise ConflitÉtat(
                f"Paiement {self.id} : transition {self.statut.name} -> {cible.name} interdite"
            )
        self.statut = cible

    def réussir(self, méthode: MéthodePaiement, référence_transaction: str, maintenant: datetime) -> None:
        self._transition(StatutPaiement.REUSSI)
        self.méthode = méthode
        self.référence_transaction = référence_transaction
        self.motif_échec = None
        self.payé_le = maintenant

    def échouer(self, méthode: MéthodePaiement, motif: Optional[str]) -> None:
        self._transition(StatutPaiement.ECHOUE)
        self.méthode = méthode
        self.motif_échec = motif
        self.tentatives += 1

    def rembourser(self, maintenant: datetime) -> None:
        self._transition(StatutPaiement.REMBOURSE)
        self.remboursement_en_attente = False
        self.remboursé_le = maintenant


class Réservation:
    """
    Agrégat racine : une réservation de billets et son paiement.

    Créée EN_ATTENTE avec des places bloquées, elle devient CONFIRMEE
    quand le paiement réussit, et ANNULEE par annulation du client,
    annulation de l'événement ou expiration du blocage.
    """

    def __init__(
        self,
        id: str,
        client_id: str,
        événement_id: str,
        catégorie_id: str,
        quantité: int,
        créée_le: datetime,
        paiement: Paiement,
        statut: StatutRéservation = StatutRéservation.EN_ATTENTE,
        annulée_le: Optional[datetime] = None,
        numéro_version: int = 0,
    ):
        self.id = id
        self.client_id = client_id
        self.événement_id = événement_id
        self.catégorie_id = catégorie_id
        self.quantité = quantité
        self.créée_le = créée_le
        self.paiement = paiement
        self.statut = statut
        self.annulée_le = annulée_le
        self.numéro_version = numéro_version
        self.faits: list[events.Event] = []

    @classmethod
    def ouvrir(
        cls,
        id: str,
        client_id: str,
        événement_id: str,
        catégorie: CatégorieBillets,
        quantité: int,
        maintenant: datetime,
    ) -> Réservation:
        """Crée la réservation et son paiement en attente, au prix de la catégorie."""
        paiement = Paiement(
            id=f"pai-{id}",
            réservation_id=id,
            montant=catégorie.prix_unitaire * quantité,
        )
        réservation = cls(
            id=id,
            client_id=client_id,
            événement_id=événement_id,
            catégorie_id=catégorie.id,
            quantité=quantité,
            créée_le=maintenant,
            paiement=paiement,
        )
        réservation.faits.append(
            events.RéservationCréée(
                réservation_id=id,
                événement_id=événement_id,
                catégorie_id=catégorie.id,
                quantité=quantité,
            )
        )
        return réservation

    def __repr__(self) -> str:
        return f"<Réservation {self.id} {self.statut.name}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Réservation):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def jeton(self) -> JetonBlocage:
        """Le jeton du blocage posé pour cette réservation."""
        return JetonBlocage(self.catégorie_id, self.id, self.quantité)

    @property
    def est_payée(self) -> bool:
        return self.paiement.statut is StatutPaiement.REUSSI

    def _transition(self, cible: StatutRéservation) -> None:
        if cible not in TRANSITIONS_RÉSERVATION[self.statut]:
            raise ConflitÉtat(
                f"Réservation {self.id} : transition {self.statut.name} -> {cible.name} interdite"
            )
        self.statut = cible
        self.numéro_version += 1

    def vérifier_payable(self) -> None:
        if self.statut is not StatutRéservation.EN_ATTENTE:
            raise ConflitÉtat(f"La réservation {self.id} est {self.statut.value.lower()}")
        if self.paiement.statut not in (StatutPaiement.EN_ATTENTE, StatutPaiement.ECHOUE):
            raise ConflitÉtat(f"La réservation {self.id} a déjà été payée")

    def confirmer_paiement(
        self, méthode: MéthodePaiement, référence_transaction: str, maintenant: datetime
    ) -> None:
        self.vérifier_payable()
        self.paiement.réussir(méthode, référence_transaction, maintenant)
        self._transition(StatutRéservation.CONFIRMEE)
        self.faits.append(
            events.RéservationConfirmée(
                réservation_id=self.id,
                client_id=self.client_id,
                montant=self.paiement.montant,
            )
        )

    def enregistrer_échec_paiement(self, méthode: MéthodePaiement, motif: Optional[str]) -> None:
        """Le paiement est refusé ; la réservation reste en attente et ses places bloquées."""
        self.vérifier_payable()
        self.paiement.échouer(méthode, motif)
        self.numéro_version += 1
        self.faits.append(events.PaiementÉchoué(réservation_id=self.id, motif=motif))

    def annuler(self, maintenant: datetime, remboursable: bool) -> None:
        """
        Passe la réservation à ANNULEE. Si elle est remboursable,
        le paiement est marqué « remboursement en attente » jusqu'à
        ce que la passerelle confirme le remboursement.
        """
        self._transition(StatutRéservation.ANNULEE)
        self.annulée_le = maintenant
        if remboursable and self.est_payée:
            self.paiement.remboursement_en_attente = True
        self.faits.append(
            events.RéservationAnnulée(
                réservation_id=self.id,
                événement_id=self.événement_id,
                remboursable=remboursable,
            )
        )

    def expirer(self, maintenant: datetime) -> None:
        """Abandon d'une réservation jamais payée dont le blocage a expiré."""
        if self.statut is not StatutRéservation.EN_ATTENTE:
            raise ConflitÉtat(f"La réservation {self.id} n'est plus en attente")
        self._transition(StatutRéservation.ANNULEE)
        self.annulée_le = maintenant
        self.faits.append(
            events.BlocageExpiré(réservation_id=self.id, catégorie_id=self.catégorie_id)
        )

    def enregistrer_remboursement(self, maintenant: datetime) -> None:
        if not self.paiement.remboursement_en_attente:
            raise ConflitÉtat(f"Aucun remboursement en attente pour la réservation {self.id}")
        self.paiement.rembourser(maintenant)
        self.numéro_version += 1
        self.faits.append(
            events.RemboursementEffectué(réservation_id=self.id, montant=self.paiement.montant)
        )

    def signaler_remboursement_en_souffrance(self, motif: str) -> None:
        self.faits.append(
            events.RemboursementEnSouffrance(
                réservation_id=self.id,
                montant=self.paiement.montant,
                motif=motif,
            )
        )
