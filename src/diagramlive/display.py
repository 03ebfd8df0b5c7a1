"""The single display slot the scheduler renders into."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .errors import DiagramliveError
from .models import VectorMarkup

logger = logging.getLogger(__name__)

Listener = Callable[["DisplaySlot"], None]


class DisplaySlot:
    """Holds either one mounted diagram, one error, or nothing.

    Every write clears the previous content first, so a new generation never
    sees leftovers from an older one.
    """

    def __init__(self) -> None:
        self._markup: Optional[VectorMarkup] = None
        self._error: Optional[DiagramliveError] = None
        self._generation = 0
        self._listeners: List[Listener] = []

    @property
    def markup(self) -> Optional[VectorMarkup]:
        return self._markup

    @property
    def error(self) -> Optional[DiagramliveError]:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_empty(self) -> bool:
        return self._markup is None and self._error is None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self, generation: Optional[int] = None) -> None:
        self._markup = None
        self._error = None
        if generation is not None:
            self._generation = generation
        self._notify()

    def mount(self, generation: int, markup: VectorMarkup) -> None:
        self._reset()
        self._markup = markup
        self._generation = generation
        logger.debug("mounted generation %d (%gx%g)", generation, markup.width, markup.height)
        self._notify()

    def show_error(self, generation: int, error: DiagramliveError) -> None:
        self._reset()
        self._error = error
        self._generation = generation
        logger.debug("generation %d failed: %s", generation, error)
        self._notify()

    def _reset(self) -> None:
        self._markup = None
        self._error = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)


__all__ = ["DisplaySlot"]
