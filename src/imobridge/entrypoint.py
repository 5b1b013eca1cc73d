"""
CLI entrypoint that boots one observer/broadcaster process.

The input method adapter is chosen by ``--im-name`` (or the ``run_im``
directive of ``~/.xinputrc``), the output transport by ``--mode``. Command
line flags override ``config.yaml`` and ``IMOBRIDGE_*`` environment values.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

from .adapters import create_adapter
from .core.config import DEFAULT_PORT, ConfigError, ConfigService
from .core.orchestrator import Orchestrator
from .core.status_file import StatusFileWriter
from .exceptions import UnsupportedInputMethodError
from .transports import TRANSPORT_REGISTRY, create_transport, resolve_mode

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3


class _ArgumentParser(argparse.ArgumentParser):
    """Argument errors print usage and exit with status 1."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """
    Log to stderr and, when `log_file` is set, to a rotating file as well.

    stdout is left alone because it carries console or framed output.
    Calling this again only adjusts the level and adds a file handler for a
    log file that is not attached yet.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, stream=sys.stderr)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    if log_file is None:
        return

    target = log_file.expanduser().absolute()
    for handler in root.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            if Path(handler.baseFilename) == target:
                return
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Log directory %s is not writable: %s", target.parent, exc)
        return
    file_handler = logging.handlers.RotatingFileHandler(
        target,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="imo-bridge",
        description="imo-bridge -- report input method status",
        add_help=False,
    )
    parser.add_argument(
        "-h",
        "--help",
        "-?",
        action="store_true",
        dest="help",
        help="Show this message and exit.",
    )
    parser.add_argument(
        "-i",
        "--im-name",
        choices=["ibus", "fcitx", "fcitx5"],
        default=None,
        help="Input method name; detected from ~/.xinputrc when omitted.",
    )
    parser.add_argument(
        "-m",
        "--mode",
        type=resolve_mode,
        choices=sorted(TRANSPORT_REGISTRY),
        default=None,
        help="Output mode (default: stdout).",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help=f"Port for websocket output mode (default: {DEFAULT_PORT}).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=None,
        help="Log per-client traffic and debug details.",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml (default: ~/.config/imo-bridge).",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.help:
        parser.print_help()
        return 1

    configure_logging("DEBUG" if args.verbose else "INFO")
    try:
        config_service = ConfigService(config_dir=args.config_dir)
        settings = config_service.apply_changes(
            {
                "im_name": args.im_name,
                "mode": args.mode,
                "port": args.port,
                "verbose": args.verbose,
            }
        )
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return 1

    configure_logging("DEBUG" if settings.verbose else settings.log_level, settings.log_file)

    try:
        adapter = create_adapter(settings.im_name, xinputrc=settings.xinputrc)
    except UnsupportedInputMethodError as exc:
        LOGGER.error("%s", exc)
        return 1

    orchestrator = Orchestrator(
        settings,
        adapter,
        create_transport(settings),
        status_file=StatusFileWriter(settings.status_file) if settings.status_file else None,
    )
    try:
        return asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_parser", "configure_logging", "main"]
