"""
Trailing-edge debouncing for status publication and idle shutdown.

Each `Debouncer` is a two-state machine (idle / pending) driven by exactly two
operations: `schedule(payload)` (re)arms the timer with the newest payload and
`cancel()` discards whatever is pending. `DebouncedPublisher` owns two
independent instances, one for publishing and one for idle shutdown.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from .contracts import StatusRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

Action = Callable[[T], Awaitable[None] | None]


class Debouncer(Generic[T]):
    """Delay an action until `delay` seconds pass without a new `schedule` call."""

    def __init__(self, action: Action[T], delay: float, *, name: str = "debounce") -> None:
        if delay <= 0:
            raise ValueError("Debounce delay must be positive.")
        self._action = action
        self._delay = delay
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._payload: T | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, payload: T) -> None:
        """Arm (or re-arm) the timer; the latest payload wins."""
        if self._handle is not None:
            self._handle.cancel()
        self._payload = payload
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Discard any pending timer and payload."""
        if self._handle is not None:
            self._handle.cancel()
            logger.debug("%s: pending timer cancelled", self._name)
        self._handle = None
        self._payload = None

    async def drain(self) -> None:
        """Wait for actions that were already fired but are still running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        payload = self._payload
        self._handle = None
        self._payload = None
        try:
            result = self._action(payload)  # type: ignore[arg-type]
        except Exception:
            logger.exception("%s: debounced action failed", self._name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: debounced action failed", self._name, exc_info=exc)


class DebouncedPublisher:
    """
    Coalesce status publications and idle-shutdown requests.

    ``on_publish`` receives the latest snapshot once per quiet window;
    ``on_idle`` is invoked with exit status 0 when the idle window elapses
    without a `cancel_shutdown` call.
    """

    def __init__(
        self,
        on_publish: Action[StatusRecord],
        on_idle: Callable[[int], None],
        *,
        publish_delay: float = 0.05,
        idle_delay: float = 30.0,
    ) -> None:
        self._on_idle = on_idle
        self.publish_debounce: Debouncer[StatusRecord] = Debouncer(
            on_publish, publish_delay, name="publish"
        )
        self.shutdown_debounce: Debouncer[int] = Debouncer(
            self._handle_idle, idle_delay, name="idle-shutdown"
        )

    def schedule(self, state: StatusRecord) -> None:
        self.publish_debounce.schedule(state)

    def cancel(self) -> None:
        self.publish_debounce.cancel()

    def schedule_shutdown(self) -> None:
        logger.debug("Idle shutdown scheduled in %.1fs", self.shutdown_debounce.delay)
        self.shutdown_debounce.schedule(0)

    def cancel_shutdown(self) -> None:
        self.shutdown_debounce.cancel()

    async def close(self) -> None:
        """Cancel both timers and wait for an in-flight publish to finish."""
        self.publish_debounce.cancel()
        self.shutdown_debounce.cancel()
        await self.publish_debounce.drain()

    def _handle_idle(self, exit_code: int) -> None:
        logger.info("No subscribers left; shutting down.")
        self._on_idle(exit_code)


__all__ = ["DebouncedPublisher", "Debouncer"]
