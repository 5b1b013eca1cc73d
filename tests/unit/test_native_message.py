import asyncio
import io
import logging
import os
import sys

import pytest

from imobridge.core.config import BridgeSettings
from imobridge.core.contracts import StatusRecord
from imobridge.exceptions import FrameDecodeError
from imobridge.transports.native_message import (
    FrameDecoder,
    NativeMessageTransport,
    decode_body,
    encode_frame,
    encode_message,
)


def test_frame_layout_is_little_endian_length_then_body() -> None:
    frame = encode_frame(b'{"a":1}')

    assert frame[:4] == b"\x07\x00\x00\x00"
    assert frame[4:] == b'{"a":1}'


def test_encoded_messages_keep_unicode_unescaped() -> None:
    frame = encode_message({"shortState": "あ"})

    body = '{"shortState": "あ"}'.encode()
    assert frame == len(body).to_bytes(4, "little") + body


@pytest.mark.parametrize(
    "payload",
    [
        {"enable": True, "keyboard": "Mozc", "shortState": "あ", "longState": "ひらがな"},
        {"text": "\u0004\u0000\u0000\u0000looks like a header"},
        [],
    ],
)
def test_decoder_reproduces_encoded_payload(payload) -> None:
    decoder = FrameDecoder()

    assert decoder.feed(encode_message(payload)) == [payload]
    assert decoder.buffered == 0


def test_frame_split_across_reads_is_completed_later() -> None:
    decoder = FrameDecoder()
    frame = encode_message({"keyboard": "Skk"})

    messages = []
    for index in range(len(frame)):
        messages.extend(decoder.feed(frame[index : index + 1]))

    assert messages == [{"keyboard": "Skk"}]


def test_one_read_may_carry_several_frames() -> None:
    decoder = FrameDecoder()
    data = encode_message(1) + encode_message("two") + encode_message({"three": 3})[:6]

    assert decoder.feed(data) == [1, "two"]
    assert decoder.buffered == 6


def test_malformed_frame_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    decoder = FrameDecoder()

    with caplog.at_level(logging.WARNING):
        messages = decoder.feed(encode_frame(b"{not json") + encode_message("ok"))

    assert messages == ["ok"]
    assert "malformed frame" in caplog.text


def test_decode_body_rejects_invalid_utf8() -> None:
    with pytest.raises(FrameDecodeError):
        decode_body(b"\xff\xfe")


def test_oversized_declared_length_drops_buffer(caplog: pytest.LogCaptureFixture) -> None:
    decoder = FrameDecoder(max_frame_bytes=16)

    with caplog.at_level(logging.WARNING):
        messages = decoder.feed((1024).to_bytes(4, "little") + b"x" * 32)

    assert messages == []
    assert decoder.buffered == 0
    assert "exceeds 16" in caplog.text


class DrainingWriter:
    """Pipe writer stand-in that records writes and drains."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.events: list[str] = []

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)
        self.events.append("write")

    async def drain(self) -> None:
        self.events.append("drain")


@pytest.mark.asyncio
async def test_broadcast_drains_pipe_writer_after_each_frame(bridge_context) -> None:
    writer = DrainingWriter()
    transport = NativeMessageTransport(writer=writer, reader=asyncio.StreamReader())
    await transport.start(bridge_context)
    state = StatusRecord(keyboard="Skk", short_state="A_", long_state="英数")

    await transport.broadcast(state)
    await transport.broadcast(state)
    await transport.stop()

    assert writer.events == ["write", "drain", "write", "drain"]
    assert FrameDecoder().feed(bytes(writer.buffer)) == [state.to_wire(), state.to_wire()]
    assert bytes(writer.buffer).startswith(encode_message(state.to_wire()))


@pytest.mark.asyncio
async def test_broadcast_writes_one_frame_per_publish() -> None:
    output = io.BytesIO()
    transport = NativeMessageTransport(output=output)
    state = StatusRecord(enable=True, keyboard="Mozc", short_state="あ")

    await transport.broadcast(state)
    await transport.broadcast(state)

    decoded = FrameDecoder().feed(output.getvalue())
    assert decoded == [state.to_wire(), state.to_wire()]


@pytest.mark.asyncio
async def test_read_loop_logs_inbound_frames_until_eof(
    bridge_context, caplog: pytest.LogCaptureFixture
) -> None:
    reader = asyncio.StreamReader()
    transport = NativeMessageTransport(
        BridgeSettings(native_message={"max_frame_bytes": 1024}),
        reader=reader,
        output=io.BytesIO(),
    )
    frame = encode_message({"ping": "ブラウザ"})
    reader.feed_data(frame[:3])
    reader.feed_data(frame[3:])
    reader.feed_eof()

    with caplog.at_level(logging.DEBUG, logger="imobridge.transports.native_message"):
        await transport.start(bridge_context)
        await asyncio.wait_for(transport._read_task, timeout=1.0)  # type: ignore[arg-type]
        await transport.stop()

    assert "got a message" in caplog.text
    assert "ブラウザ" in caplog.text
    assert "stdin closed by host." in caplog.text


@pytest.mark.asyncio
async def test_stdout_pipe_receives_frames_through_asyncio_writer(
    bridge_context, monkeypatch: pytest.MonkeyPatch
) -> None:
    read_fd, write_fd = os.pipe()
    monkeypatch.setattr(sys, "stdout", io.TextIOWrapper(os.fdopen(write_fd, "wb")))
    transport = NativeMessageTransport(reader=asyncio.StreamReader())
    state = StatusRecord(enable=True, keyboard="Mozc")

    try:
        await transport.start(bridge_context)
        await transport.broadcast(state)
        await transport.stop()
        data = os.read(read_fd, 4096)
    finally:
        os.close(read_fd)

    assert FrameDecoder().feed(data) == [state.to_wire()]
