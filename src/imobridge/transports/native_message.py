"""
Length-framed JSON over stdio, as used by browser native messaging hosts.

Every frame is a 4-byte little-endian body length followed by the UTF-8 JSON
body; frames are concatenated without separators. Inbound frames are decoded
and logged only. Outbound frames go through an asyncio pipe writer and are
drained, so a host that stops reading stalls the publish, not the loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import struct
import sys
from typing import Any, BinaryIO, Protocol

from ..core.config import BridgeSettings, NativeMessageSettings
from ..core.contracts import BridgeContext, StatusRecord
from ..exceptions import FrameDecodeError

logger = logging.getLogger(__name__)

HEADER = struct.Struct("<I")
HEADER_LENGTH = HEADER.size
READ_CHUNK_SIZE = 64 * 1024


def encode_frame(body: bytes) -> bytes:
    """Prefix `body` with its little-endian length."""
    return HEADER.pack(len(body)) + body


def encode_message(payload: Any) -> bytes:
    """Serialize `payload` as UTF-8 JSON and frame it."""
    return encode_frame(json.dumps(payload, ensure_ascii=False).encode("utf-8"))


def decode_body(body: bytes) -> Any:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FrameDecodeError(f"malformed frame of {len(body)} bytes: {exc}") from exc


class FrameDecoder:
    """
    Incremental decoder for the inbound byte stream.

    Bytes are buffered until a complete frame is available, so a frame split
    across reads is simply completed by a later `feed`. A frame whose body is
    not valid JSON is logged and skipped; a declared length above
    `max_frame_bytes` cannot be resynchronised and drops the buffered bytes.
    """

    def __init__(self, *, max_frame_bytes: int = 64 * 1024 * 1024) -> None:
        self._buffer = bytearray()
        self._max_frame_bytes = max_frame_bytes

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[Any]:
        self._buffer.extend(data)
        messages: list[Any] = []
        while len(self._buffer) >= HEADER_LENGTH:
            (length,) = HEADER.unpack_from(self._buffer)
            if length > self._max_frame_bytes:
                logger.warning(
                    "Discarding %d buffered bytes: declared frame length %d exceeds %d",
                    len(self._buffer),
                    length,
                    self._max_frame_bytes,
                )
                self._buffer.clear()
                break
            end = HEADER_LENGTH + length
            if len(self._buffer) < end:
                break
            body = bytes(self._buffer[HEADER_LENGTH:end])
            del self._buffer[:end]
            try:
                messages.append(decode_body(body))
            except FrameDecodeError as exc:
                logger.warning("Discarding %s", exc)
        return messages


class FrameWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class NativeMessageTransport:
    """Write framed snapshots to stdout and log framed messages read from stdin."""

    name = "native-message"

    def __init__(
        self,
        settings: BridgeSettings | None = None,
        *,
        reader: asyncio.StreamReader | None = None,
        writer: FrameWriter | None = None,
        output: BinaryIO | None = None,
    ) -> None:
        options = settings.native_message if settings else NativeMessageSettings()
        self._decoder = FrameDecoder(max_frame_bytes=options.max_frame_bytes)
        self._reader = reader
        self._writer = writer
        self._output = output
        self._pipe: asyncio.ReadTransport | None = None
        self._write_pipe: asyncio.WriteTransport | None = None
        self._read_task: asyncio.Task[None] | None = None

    async def start(self, context: BridgeContext) -> None:
        if self._reader is None:
            self._reader = await self._open_stdin()
        if self._reader is not None:
            self._read_task = asyncio.create_task(self._read_loop(), name="imobridge-stdin")
        if self._writer is None and self._output is None:
            self._writer = await self._open_stdout()
        logger.info("starting NativeMessaging mode...")

    async def broadcast(self, state: StatusRecord) -> None:
        frame = encode_message(state.to_wire())
        if self._writer is not None:
            self._writer.write(frame)
            await self._writer.drain()
            return
        output = self._output or sys.stdout.buffer
        output.write(frame)
        output.flush()

    async def stop(self) -> None:
        if self._read_task:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task
            self._read_task = None
        if self._pipe is not None:
            self._pipe.close()
            self._pipe = None
        if self._write_pipe is not None:
            self._write_pipe.close()
            self._write_pipe = None
            self._writer = None

    async def _open_stdin(self) -> asyncio.StreamReader | None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        try:
            self._pipe, _protocol = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer
            )
        except (OSError, ValueError) as exc:
            logger.warning("stdin is not readable as a stream (%s); inbound frames ignored.", exc)
            return None
        return reader

    async def _open_stdout(self) -> FrameWriter | None:
        loop = asyncio.get_running_loop()
        try:
            self._write_pipe, protocol = await loop.connect_write_pipe(
                asyncio.streams.FlowControlMixin, sys.stdout.buffer
            )
        except (OSError, ValueError) as exc:
            logger.warning("stdout is not a pipe (%s); frames are written synchronously.", exc)
            return None
        return asyncio.StreamWriter(self._write_pipe, protocol, None, loop)

    async def _read_loop(self) -> None:
        reader = self._reader
        if reader is None:
            return
        while True:
            data = await reader.read(READ_CHUNK_SIZE)
            if not data:
                logger.info("stdin closed by host.")
                return
            for message in self._decoder.feed(data):
                logger.debug("*** got a message *** %r", message)


__all__ = [
    "FrameDecoder",
    "FrameWriter",
    "NativeMessageTransport",
    "decode_body",
    "encode_frame",
    "encode_message",
]
