"""Debounced, generation-ordered rendering of diagram source."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from .compiler import Compiler, is_internal_fault
from .config import PipelineConfig
from .display import DisplaySlot
from .errors import CompileError, NormalizationError
from .models import DiagramSource, RenderRequest, RenderResult, VectorMarkup
from .postprocess import normalize

logger = logging.getLogger(__name__)


class CancellableTimer:
    """One pending callback at a time; starting again replaces the old one."""

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()
        self._task = asyncio.ensure_future(self._fire(delay, callback))

    def cancel(self) -> bool:
        if not self.pending:
            return False
        self._task.cancel()
        return True

    async def wait(self) -> None:
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    @staticmethod
    async def _fire(delay: float, callback: Callable[[], None]) -> None:
        await asyncio.sleep(delay)
        callback()


class RenderScheduler:
    """Decides when to render and whether a finished render still matters.

    Only the latest generation ever reaches the display slot. Older results
    are dropped whatever order they complete in.
    """

    def __init__(
        self,
        compiler: Compiler,
        display: Optional[DisplaySlot] = None,
        config: Optional[PipelineConfig] = None,
        *,
        normalizer: Callable[[str], VectorMarkup] = normalize,
    ) -> None:
        self._compiler = compiler
        self.display = display if display is not None else DisplaySlot()
        self._config = config or PipelineConfig()
        self._normalize = normalizer
        self._timer = CancellableTimer()
        self._generation = 0
        self._accepted_source: Optional[DiagramSource] = None
        self._latest_source: Optional[DiagramSource] = None
        self._in_flight: Dict[int, RenderRequest] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def accepted_source(self) -> Optional[DiagramSource]:
        return self._accepted_source

    @property
    def busy(self) -> bool:
        return self._timer.pending or bool(self._tasks)

    def submit(self, source: DiagramSource, trigger: str = "keystroke") -> bool:
        """Schedule a render of ``source``; returns False when nothing changed."""
        delay = self._config.debounce_for(trigger)
        self._latest_source = source
        if source == self._accepted_source:
            if self.busy:
                # Edited away and back: anything pending would replace what is shown.
                self.cancel()
            return False
        if not source.strip():
            self._timer.cancel()
            self._generation += 1
            self._accepted_source = source
            self.display.clear(self._generation)
            return True
        self._timer.start(delay, lambda: self._issue(source))
        return True

    def cancel(self) -> None:
        self._timer.cancel()
        self._generation += 1

    def force_refresh(self) -> None:
        self._accepted_source = None
        self._generation += 1

    def refresh(self) -> bool:
        """Re-render the most recent source even though it has not changed."""
        self.force_refresh()
        if self._latest_source is None:
            return False
        return self.submit(self._latest_source, trigger="programmatic")

    def on_result(self, generation: int, outcome: Union[str, CompileError]) -> bool:
        """Apply a finished render; returns True if it was accepted."""
        request = self._in_flight.pop(generation, None)
        if generation < self._generation:
            logger.debug("dropping stale generation %d (latest is %d)", generation, self._generation)
            return False

        result = RenderResult(generation, outcome)
        if request is not None:
            self._accepted_source = request.source
        for stale in [g for g in self._in_flight if g < generation]:
            del self._in_flight[stale]

        if result.error is not None:
            self.display.show_error(generation, result.error)
            return True
        try:
            markup = self._normalize(result.outcome)
        except NormalizationError as exc:
            self.display.show_error(generation, exc)
            return True
        self.display.mount(generation, markup)
        return True

    async def wait_idle(self) -> None:
        while self.busy:
            await self._timer.wait()
            if self._tasks:
                await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        self._timer.cancel()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._in_flight.clear()

    def _issue(self, source: DiagramSource) -> None:
        self._generation += 1
        request = RenderRequest(self._generation, source, time.time())
        self._in_flight[request.generation] = request
        logger.debug("issuing generation %d", request.generation)
        task = asyncio.ensure_future(self._render(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _render(self, request: RenderRequest) -> None:
        try:
            outcome: Union[str, CompileError] = await self._compile(request)
        except CompileError as exc:
            outcome = exc
        self.on_result(request.generation, outcome)

    async def _compile(self, request: RenderRequest) -> str:
        diagnostic = await self._guard(self._compiler.validate(request.source), precheck=True)
        if diagnostic is not None:
            raise _precheck_error(diagnostic.to_error())
        return await self._guard(self._compiler.compile(f"diagram-{request.generation}", request.source))

    @staticmethod
    async def _guard(call: Awaitable, *, precheck: bool = False):
        try:
            return await call
        except CompileError as exc:
            raise _precheck_error(exc) if precheck else exc
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            error = CompileError(message)
            raise (_precheck_error(error) if precheck else error) from exc


def _precheck_error(error: CompileError) -> CompileError:
    # Null/undefined faults in the pre-check crash the full compile too.
    if not error.fatal and is_internal_fault(error.message):
        error.fatal = True
    return error


__all__ = ["CancellableTimer", "RenderScheduler"]
