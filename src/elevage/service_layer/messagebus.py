"""
Message Bus.

Point de passage unique des commands (intentions) et des events (faits).

Une command est confiée à son unique handler : son résultat (l'agrégat
créé ou modifié) est rendu à l'appelant, son erreur aussi. Un event est
diffusé à tous ses handlers ; l'échec de l'un est journalisé sans
empêcher les suivants, ni faire échouer la command d'origine.

Les events produits par un handler (collectés par le Unit of Work après
commit) sont ajoutés à la file et traités dans la foulée, y compris
quand la command échoue après un premier commit.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from functools import partial
from typing import Any, Callable, Union

from elevage.domain import commands, events
from elevage.service_layer import unit_of_work

logger = logging.getLogger(__name__)

Message = Union[commands.Command, events.Event]


class MessageBus:
    """
    Message Bus avec injection de dépendances.

    Les dépendances sont liées aux handlers une fois pour toutes à la
    construction : chaque paramètre après le message est résolu par son
    nom (`uow` ou une clé de `dependencies`).
    """

    def __init__(
        self,
        uow: unit_of_work.AbstractUnitOfWork,
        event_handlers: dict[type[events.Event], list[Callable]],
        command_handlers: dict[type[commands.Command], Callable],
        dependencies: dict[str, Any] | None = None,
    ):
        self.uow = uow
        self.dependencies = {"uow": uow, **(dependencies or {})}
        self.event_handlers = {
            type_event: [self._injecter(handler) for handler in liste]
            for type_event, liste in event_handlers.items()
        }
        self.command_handlers = {
            type_command: self._injecter(handler)
            for type_command, handler in command_handlers.items()
        }
        self.queue: deque[Message] = deque()

    def handle(self, message: Message) -> list[Any]:
        """
        Traite un message puis, en cascade, les events qui en découlent.

        Retourne les résultats des commands traitées.
        """
        self.queue = deque([message])
        résultats: list[Any] = []
        while self.queue:
            message = self.queue.popleft()
            if isinstance(message, commands.Command):
                try:
                    résultats.append(self._exécuter(message))
                except Exception:
                    self._écouler_les_events()
                    raise
            elif isinstance(message, events.Event):
                self._diffuser(message)
            else:
                raise ValueError(f"Message de type inconnu : {type(message)}")
            self.queue.extend(self.uow.collect_new_events())
        return résultats

    def _exécuter(self, command: commands.Command) -> Any:
        handler = self.command_handlers.get(type(command))
        if handler is None:
            raise ValueError(f"Aucun handler pour la command {type(command).__name__}")
        logger.debug("Command %s", command)
        return handler(command)

    def _diffuser(self, event: events.Event) -> None:
        for handler in self.event_handlers.get(type(event), []):
            try:
                logger.debug("Event %s -> %s", event, _nom(handler))
                handler(event)
            except Exception:
                logger.exception("Échec de %s sur l'event %s", _nom(handler), event)

    def _écouler_les_events(self) -> None:
        """
        Diffuse les events des écritures validées avant l'échec d'une command.

        Une command peut commiter plusieurs fois (la vente, puis chaque
        décrément de stock) : ce qui a été validé reste publié.
        """
        self.queue.extend(self.uow.collect_new_events())
        while self.queue:
            self._diffuser(self.queue.popleft())
            self.queue.extend(self.uow.collect_new_events())

    def _injecter(self, handler: Callable) -> Callable:
        """Lie au handler les dépendances qu'il déclare (le message reste libre)."""
        paramètres = list(inspect.signature(handler).parameters)[1:]
        liées = {nom: self.dependencies[nom] for nom in paramètres if nom in self.dependencies}
        return partial(handler, **liées) if liées else handler


def _nom(handler: Callable) -> str:
    cible = handler.func if isinstance(handler, partial) else handler
    return getattr(cible, "__name__", repr(cible))
