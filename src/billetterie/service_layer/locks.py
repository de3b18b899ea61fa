"""
Verrous nommés, un par ressource partagée.

Deux familles de clés :
- « categorie:<id> » sérialise toutes les mutations du registre
  d'inventaire d'une catégorie (bloquer, confirmer, libérer) ;
- « reservation:<id> » rend payer et annuler mutuellement exclusifs
  sur une même réservation.

Ordre d'acquisition : réservation puis catégorie(s), jamais l'inverse.
Plusieurs catégories sont toujours prises dans l'ordre de leurs clés.
Aucun verrou de catégorie n'est gardé pendant un appel à la passerelle.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator

from billetterie.domain.errors import ConflitÉtat

logger = logging.getLogger(__name__)


def clé_catégorie(catégorie_id: str) -> str:
    return f"categorie:{catégorie_id}"


def clé_réservation(réservation_id: str) -> str:
    return f"reservation:{réservation_id}"


class Verrous:
    """Registre de threading.Lock indexés par clé, créés à la demande."""

    def __init__(self) -> None:
        self._registre = threading.Lock()
        self._verrous: dict[str, threading.Lock] = {}

    def _obtenir(self, clé: str) -> threading.Lock:
        with self._registre:
            return self._verrous.setdefault(clé, threading.Lock())

    @contextmanager
    def verrou(self, clé: str, bloquant: bool = True) -> Iterator[None]:
        """
        Prend le verrou `clé` le temps du bloc.

        En mode non bloquant, un verrou déjà pris lève ConflitÉtat :
        une autre opération est en cours sur la même ressource.
        """
        verrou = self._obtenir(clé)
        if not verrou.acquire(blocking=bloquant):
            logger.debug("Verrou %s déjà pris", clé)
            raise ConflitÉtat(f"Une autre opération est en cours sur {clé}")
        try:
            yield
        finally:
            verrou.release()

    @contextmanager
    def plusieurs(self, clés: Iterable[str]) -> Iterator[None]:
        with ExitStack() as pile:
            for clé in sorted(set(clés)):
                pile.enter_context(self.verrou(clé))
            yield
