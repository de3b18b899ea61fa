"""
Registre d'inventaire des billets.

Chaque CatégorieBillets (Standard, VIP, Premium...) possède une capacité
et la liste des blocages posés sur elle. Un blocage est une réservation
provisoire de places, identifiée par la référence de la réservation :
- BLOQUE : places mises de côté en attendant le paiement ;
- CONFIRME : places vendues ;
- LIBERE : places rendues au stock.

Les compteurs (bloquées, confirmées) sont dérivés des blocages, ce qui
garantit qu'ils ne divergent jamais de l'historique.

Invariant : bloquées + confirmées <= capacité, à tout instant.
Le registre ne fait aucune synchronisation lui-même : l'appelant
sérialise les mutations d'une même catégorie (voir service_layer.locks).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from billetterie.domain.errors import CapacitéDépassée, JetonInvalide, RègleMétier


class CatégorieTicket(Enum):
    STANDARD = "Standard"
    VIP = "VIP"
    PREMIUM = "Premium"


class StatutBlocage(Enum):
    BLOQUE = "Bloqué"
    CONFIRME = "Confirmé"
    LIBERE = "Libéré"


@dataclass(frozen=True)
class JetonBlocage:
    """
    Value Object remis par bloquer() et présenté à confirmer() / libérer().

    Il ne porte que ce qui permet de retrouver le blocage : deux jetons
    de même contenu désignent le même blocage.
    """

    catégorie_id: str
    référence: str
    quantité: int


class Blocage:
    """Entité : places mises de côté pour une réservation donnée."""

    def __init__(
        self,
        référence: str,
        quantité: int,
        expire_le: datetime,
        statut: StatutBlocage = StatutBlocage.BLOQUE,
    ):
        self.référence = référence
        self.quantité = quantité
        self.expire_le = expire_le
        self.statut = statut

    def __repr__(self) -> str:
        return f"<Blocage {self.référence} {self.statut.name} x{self.quantité}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Blocage):
            return NotImplemented
        return self.référence == other.référence

    def __hash__(self) -> int:
        return hash(self.référence)

    def est_expiré(self, maintenant: datetime) -> bool:
        return self.statut is StatutBlocage.BLOQUE and self.expire_le <= maintenant


class CatégorieBillets:
    """
    Catégorie de billets d'un événement et son registre de blocages.

    numéro_version est incrémenté à chaque mutation du registre ;
    la couche de persistance s'en sert pour détecter les écritures
    concurrentes.
    """

    def __init__(
        self,
        id: str,
        libellé: CatégorieTicket,
        prix_unitaire: Decimal,
        capacité: int,
        ordre: int = 0,
        blocages: Optional[list[Blocage]] = None,
        numéro_version: int = 0,
    ):
        self.id = id
        self.libellé = libellé
        self.prix_unitaire = Decimal(prix_unitaire)
        self.capacité = capacité
        self.ordre = ordre
        self.événement_id: Optional[str] = None
        self._blocages = blocages or []
        self.numéro_version = numéro_version

    def __repr__(self) -> str:
        return f"<CatégorieBillets {self.id} {self.libellé.name}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CatégorieBillets):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    # --- Compteurs dérivés ---

    def _total(self, statut: StatutBlocage) -> int:
        return sum(b.quantité for b in self._blocages if b.statut is statut)

    @property
    def bloquées(self) -> int:
        return self._total(StatutBlocage.BLOQUE)

    @property
    def confirmées(self) -> int:
        return self._total(StatutBlocage.CONFIRME)

    @property
    def disponibles(self) -> int:
        return self.capacité - self.bloquées - self.confirmées

    # --- Opérations du registre ---

    def bloquer(self, référence: str, quantité: int, expire_le: datetime) -> JetonBlocage:
        """
        Met `quantité` places de côté pour la réservation `référence`.

        Tout ou rien : si la capacité ne suffit pas, CapacitéDépassée
        est levée et le registre est inchangé. Rejouer le même blocage
        renvoie le jeton existant sans rien compter deux fois.
        """
        if quantité <= 0:
            raise RègleMétier(f"Quantité invalide : {quantité}")

        existant = self._trouver(référence)
        if existant is not None:
            if existant.statut is StatutBlocage.LIBERE:
                raise JetonInvalide(f"Le blocage {référence} a déjà été libéré")
            return self._jeton(existant)

        if quantité > self.disponibles:
            raise CapacitéDépassée(self.id, quantité, self.disponibles)

        blocage = Blocage(référence, quantité, expire_le)
        self._blocages.append(blocage)
        self.numéro_version += 1
        return self._jeton(blocage)

    def confirmer(self, jeton: JetonBlocage) -> None:
        """Passe un blocage de « bloqué » à « vendu » (idempotent)."""
        blocage = self._blocage_du_jeton(jeton)
        if blocage.statut is StatutBlocage.LIBERE:
            raise JetonInvalide(f"Le blocage {jeton.référence} a déjà été libéré")
        if blocage.statut is StatutBlocage.CONFIRME:
            return
        blocage.statut = StatutBlocage.CONFIRME
        self.numéro_version += 1

    def libérer(self, jeton: JetonBlocage) -> bool:
        """
        Rend au stock les places d'un blocage, qu'il soit bloqué ou confirmé.

        Retourne False si le blocage était déjà libéré (aucun effet).
        """
        blocage = self._blocage_du_jeton(jeton)
        if blocage.statut is StatutBlocage.LIBERE:
            return False
        blocage.statut = StatutBlocage.LIBERE
        self.numéro_version += 1
        return True

    def blocages_expirés(self, maintenant: datetime) -> list[JetonBlocage]:
        return [self._jeton(b) for b in self._blocages if b.est_expiré(maintenant)]

    def statut_blocage(self, référence: str) -> Optional[StatutBlocage]:
        blocage = self._trouver(référence)
        return blocage.statut if blocage else None

    # --- Interne ---

    def _trouver(self, référence: str) -> Optional[Blocage]:
        return next((b for b in self._blocages if b.référence == référence), None)

    def _blocage_du_jeton(self, jeton: JetonBlocage) -> Blocage:
        if jeton.catégorie_id != self.id:
            raise JetonInvalide(
                f"Le jeton {jeton.référence} appartient à la catégorie {jeton.catégorie_id}"
            )
        blocage = self._trouver(jeton.référence)
        if blocage is None or blocage.quantité != jeton.quantité:
            raise JetonInvalide(f"Jeton inconnu : {jeton.référence}")
        return blocage

    def _jeton(self, blocage: Blocage) -> JetonBlocage:
        return JetonBlocage(self.id, blocage.référence, blocage.quantité)
