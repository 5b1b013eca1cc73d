"""
systemd-style socket activation.

When a supervisor opened the listening socket for us it exports
``LISTEN_PID`` (the pid the descriptors are meant for) and ``LISTEN_FDS``
(how many descriptors were passed, starting at fd 3). See sd_listen_fds(3).
"""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Callable, Mapping

from ..exceptions import ActivationError

logger = logging.getLogger(__name__)

SD_LISTEN_FDS_START = 3

SocketFactory = Callable[[int], socket.socket]


def _socket_from_fd(fd: int) -> socket.socket:
    return socket.socket(fileno=fd)


def activated_socket(
    environ: Mapping[str, str] | None = None,
    *,
    pid: int | None = None,
    socket_factory: SocketFactory | None = None,
) -> socket.socket | None:
    """
    Return the inherited listening socket, or ``None`` when not socket activated.

    Raises `ActivationError` when the environment hands descriptors to another
    process or passes anything other than exactly one descriptor.
    """

    env = os.environ if environ is None else environ
    raw_pid = env.get("LISTEN_PID", "")
    raw_fds = env.get("LISTEN_FDS", "")
    if not raw_pid or not raw_fds:
        return None

    try:
        listen_pid = int(raw_pid)
        listen_fds = int(raw_fds)
    except ValueError as exc:
        raise ActivationError(
            f"Invalid socket activation environment LISTEN_PID={raw_pid!r} "
            f"LISTEN_FDS={raw_fds!r}"
        ) from exc

    own_pid = os.getpid() if pid is None else pid
    if listen_pid != own_pid:
        raise ActivationError(
            f"Cannot use file descriptors meant for pid {listen_pid} in pid {own_pid}"
        )
    if listen_fds != 1:
        names = env.get("LISTEN_FDNAMES", "")
        raise ActivationError(f"One file descriptor expected. {listen_fds} received ({names})")

    factory = socket_factory or _socket_from_fd
    logger.info("Using socket-activated descriptor %d", SD_LISTEN_FDS_START)
    return factory(SD_LISTEN_FDS_START)


__all__ = ["SD_LISTEN_FDS_START", "activated_socket"]
