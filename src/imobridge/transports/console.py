"""
Human readable output on stdout.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sys
from collections.abc import Callable
from typing import TextIO

from ..core.config import BridgeSettings
from ..core.contracts import BridgeContext, StatusRecord

logger = logging.getLogger(__name__)


class ConsoleTransport:
    """Print a timestamped, tab-indented JSON dump of every publish."""

    name = "stdout"

    def __init__(
        self,
        settings: BridgeSettings | None = None,
        *,
        stream: TextIO | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._stream = stream
        self._clock = clock or dt.datetime.now

    async def start(self, context: BridgeContext) -> None:
        logger.info("press ^C to stop...")

    async def broadcast(self, state: StatusRecord) -> None:
        stream = self._stream or sys.stdout
        timestamp = self._clock().strftime("%H:%M:%S")
        body = json.dumps(state.to_wire(), indent="\t", ensure_ascii=False)
        stream.write(f"{timestamp} {body}\n")
        stream.flush()

    async def stop(self) -> None:
        return None


__all__ = ["ConsoleTransport"]
