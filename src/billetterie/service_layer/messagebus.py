"""
Message Bus.

Le message bus est le point central de dispatch des messages
(commands et events) vers leurs handlers respectifs.

Fonctionnement :
1. Un message (command ou event) entre dans le bus
2. Le bus trouve le(s) handler(s) correspondant(s)
3. Le handler est exécuté
4. Les faits commités pendant l'exécution sont collectés et traités à leur tour

Différences clés :
- Une command a exactement UN handler ; l'erreur remonte à l'appelant
- Un event peut avoir 0 à N handlers ; les erreurs sont loggées mais ne bloquent pas

Le bus est partagé par les threads de l'application : la file de
messages est locale à chaque appel de handle().
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Union

from billetterie.domain import commands, events
from billetterie.domain.errors import ErreurBilletterie
from billetterie.service_layer import unit_of_work

logger = logging.getLogger(__name__)

Message = Union[commands.Command, events.Event]


class MessageBus:
    """
    Message Bus avec injection de dépendances.

    Les dépendances (uow, passerelle, verrous, paramètres, horloge)
    sont injectées à la construction et transmises aux handlers
    par introspection de leurs signatures.
    """

    def __init__(
        self,
        uow: unit_of_work.AbstractUnitOfWork,
        event_handlers: dict[type[events.Event], list[Callable]],
        command_handlers: dict[type[commands.Command], Callable],
        dependencies: dict[str, Any] | None = None,
    ):
        self.uow = uow
        self.event_handlers = event_handlers
        self.command_handlers = command_handlers
        self.dependencies = dependencies or {}

    def handle(self, message: Message) -> list[Any]:
        """
        Traite un message et tous les faits qui en découlent.

        Retourne les résultats des commands traitées, dans l'ordre.
        Si la command échoue, les faits commités avant l'échec sont
        traités, puis l'erreur est relancée.
        """
        file: list[Message] = [message]
        results: list[Any] = []
        erreur: Exception | None = None
        while file:
            message = file.pop(0)
            if isinstance(message, events.Event):
                self._handle_event(message, file)
            elif isinstance(message, commands.Command):
                try:
                    results.append(self._handle_command(message, file))
                except Exception as exc:
                    erreur = exc
            else:
                raise ValueError(f"Message de type inconnu : {type(message)}")
        if erreur is not None:
            raise erreur
        return results

    def _handle_event(self, event: events.Event, file: list[Message]) -> None:
        for handler in self.event_handlers.get(type(event), []):
            try:
                logger.debug("Traitement de l'event %s avec %s", event, handler.__name__)
                self._call_handler(handler, event)
                file.extend(self.uow.collect_new_events())
            except Exception:
                logger.exception("Erreur lors du traitement de l'event %s", event)

    def _handle_command(self, command: commands.Command, file: list[Message]) -> Any:
        """
        Dispatch une command vers son unique handler.

        Les refus métier remontent tels quels ; les erreurs de cohérence
        interne (défauts) sont en plus journalisées avec leur trace.
        """
        logger.debug("Traitement de la command %s", command)
        handler = self.command_handlers.get(type(command))
        if handler is None:
            raise ValueError(f"Aucun handler pour la command {type(command)}")
        try:
            return self._call_handler(handler, command)
        except ErreurBilletterie as exc:
            if not exc.visible:
                logger.exception("Défaut pendant la command %s", command)
            else:
                logger.info("Command %s refusée : %s", type(command).__name__, exc)
            raise
        finally:
            file.extend(self.uow.collect_new_events())

    def _call_handler(self, handler: Callable, message: Message) -> Any:
        """
        Appelle un handler en injectant les dépendances nécessaires.

        Le premier paramètre est toujours le message lui-même ; les
        suivants sont résolus par nom dans le dictionnaire de
        dépendances ou via self.uow.
        """
        params = list(inspect.signature(handler).parameters)
        kwargs: dict[str, Any] = {}
        for name in params[1:]:
            if name == "uow":
                kwargs[name] = self.uow
            elif name in self.dependencies:
                kwargs[name] = self.dependencies[name]
        return handler(message, **kwargs)
