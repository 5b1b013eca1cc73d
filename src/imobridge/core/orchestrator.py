"""
Lifecycle coordinator for one bridge process.

The orchestrator is the composition root: it wires adapter -> aggregator ->
debounced publisher -> transport, owns the exit status, and tears everything
down in reverse order once an exit is requested (idle shutdown, signal, or
server termination).
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable

from ..exceptions import BridgeError
from .config import BridgeSettings
from .contracts import BridgeContext, InputMethodAdapter, StatusRecord, StatusUpdate, Transport
from .debounce import DebouncedPublisher
from .state import StateAggregator
from .status_file import StatusFileWriter

logger = logging.getLogger(__name__)


class Orchestrator:
    """Run a single adapter/transport pair until an exit is requested."""

    def __init__(
        self,
        settings: BridgeSettings,
        adapter: InputMethodAdapter,
        transport: Transport,
        *,
        status_file: StatusFileWriter | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self._settings = settings
        self._adapter = adapter
        self._transport = transport
        self._status_file = status_file
        self._install_signals = install_signal_handlers
        self._aggregator = StateAggregator()
        self._publisher = DebouncedPublisher(
            self._deliver,
            self.request_exit,
            publish_delay=settings.debounce.publish_seconds,
            idle_delay=settings.debounce.idle_shutdown_seconds,
        )
        self._stop_event = asyncio.Event()
        self._exit_code = 0
        self.context = BridgeContext(
            settings=settings,
            aggregator=self._aggregator,
            publisher=self._publisher,
            request_exit=self.request_exit,
        )

    @property
    def publisher(self) -> DebouncedPublisher:
        return self._publisher

    @property
    def aggregator(self) -> StateAggregator:
        return self._aggregator

    def request_exit(self, exit_code: int = 0) -> None:
        """Ask the run loop to tear down and return `exit_code`."""
        if self._stop_event.is_set():
            return
        self._exit_code = exit_code
        self._stop_event.set()

    async def run(self) -> int:
        """Connect, serve until an exit is requested, and return the exit status."""
        self._adapter.on_event(self._handle_update)
        try:
            await self._adapter.connect()
        except BridgeError as exc:
            logger.error("Failed to initialize the %s observer: %s", self._adapter.name, exc)
            await self._publisher.close()
            return 1
        logger.info("Observing %s input method.", self._adapter.name)

        try:
            await self._transport.start(self.context)
        except BridgeError as exc:
            logger.error("Failed to start %s output: %s", self._transport.name, exc)
            await self._publisher.close()
            await self._adapter.disconnect()
            return 1

        if self._install_signals:
            _install_signal_handlers(self.request_exit)

        try:
            await self._stop_event.wait()
        finally:
            await self._publisher.close()
            await self._transport.stop()
            await self._adapter.disconnect()
        logger.info("Bridge stopped with exit status %d.", self._exit_code)
        return self._exit_code

    def _handle_update(self, update: StatusUpdate) -> None:
        snapshot = self._aggregator.merge(update)
        self._publisher.schedule(snapshot)

    async def _deliver(self, state: StatusRecord) -> None:
        await self._transport.broadcast(state)
        if self._status_file is not None:
            self._status_file.write(state)


def _install_signal_handlers(request_exit: Callable[[int], None]) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        logger.info("Received %s - beginning graceful shutdown.", sig_name)
        request_exit(0)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-main thread
            logger.debug("Signal handler for %s not installed.", sig.name)


__all__ = ["Orchestrator"]
