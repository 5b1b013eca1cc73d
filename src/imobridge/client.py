"""
Minimal receiving client for the WebSocket transport.

Connects to ``ws://localhost:<port>/`` and prints every status record it
receives; handy for checking a running bridge without a browser.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable, Sequence
from typing import Any, NoReturn

import websockets
from websockets.exceptions import WebSocketException

from .core.config import DEFAULT_PORT

LOGGER = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_url(port: int, host: str = "localhost") -> str:
    return f"ws://{host}:{port}/"


async def receive(
    url: str,
    *,
    connect: Callable[[str], Any] | None = None,
    output: Callable[[str], None] = print,
) -> None:
    """Print every message from `url` until the server closes the connection."""
    connector = connect or websockets.connect
    async with connector(url) as websocket:
        LOGGER.info("opened. press ^C to stop...")
        async for message in websocket:
            output(f"received: {message}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _ArgumentParser(
        prog="imo-bridge-client",
        description="imo-bridge-client -- print status records from a running bridge",
        add_help=False,
    )
    parser.add_argument("-h", "--help", "-?", action="store_true", dest="help")
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Port of the websocket output mode (default: {DEFAULT_PORT}).",
    )
    args = parser.parse_args(argv)
    if args.help:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(message)s")
    try:
        asyncio.run(receive(build_url(args.port)))
    except KeyboardInterrupt:
        return 0
    except (OSError, WebSocketException) as exc:
        LOGGER.error("Connection to port %d failed: %s", args.port, exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_url", "main", "receive"]
