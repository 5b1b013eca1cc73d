"""Input method adapters and the factory that picks one by name."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from pathlib import Path

from ..core.contracts import InputMethodAdapter
from ..exceptions import UnsupportedInputMethodError
from .events import EnableChanged, EngineChanged, PropertyUpdate
from .fcitx import FcitxAdapter
from .ibus import IBusAdapter

logger = logging.getLogger(__name__)

ADAPTER_REGISTRY: dict[str, Callable[[], InputMethodAdapter]] = {
    "ibus": IBusAdapter,
    "fcitx": FcitxAdapter,
    "fcitx5": FcitxAdapter,
}

_RUN_IM_RE = re.compile(r"^\s*run_im\s+(\S+)", re.MULTILINE)


def detect_input_method(xinputrc: Path) -> str:
    """Return the ``run_im <name>`` directive from an im-config file, or ''."""
    try:
        content = xinputrc.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Unable to read %s: %s", xinputrc, exc)
        return ""
    match = _RUN_IM_RE.search(content)
    return match.group(1) if match else ""


def create_adapter(name: str | None, *, xinputrc: Path | None = None) -> InputMethodAdapter:
    """Instantiate the adapter for `name`, auto-detecting it when empty."""
    im_name = name or ""
    if not im_name and xinputrc is not None:
        im_name = detect_input_method(xinputrc)
        logger.info('Detected input method "%s" from %s', im_name, xinputrc)
    try:
        factory = ADAPTER_REGISTRY[im_name]
    except KeyError:
        raise UnsupportedInputMethodError(im_name) from None
    return factory()


__all__ = [
    "ADAPTER_REGISTRY",
    "EnableChanged",
    "EngineChanged",
    "FcitxAdapter",
    "IBusAdapter",
    "PropertyUpdate",
    "create_adapter",
    "detect_input_method",
]
