"""
Test Configuration
==================

Pytest fixtures and test configuration for the telemetry recorder.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

import pytest

from telemetry_recorder.errors import EncoderError
from telemetry_recorder.protocol.framing import (
    OPCODE_SPEEDS,
    pack_command,
    pack_end_of_stream,
    pack_video,
)


class FakeEncoder:
    """
    In-memory encoder.

    Records every accepted chunk and writes them to output_path on close,
    so tests can check exactly which bytes reached the encoder.
    """

    def __init__(
        self,
        output_path: Path,
        fail_on_start: bool = False,
        fail_on_accept: Optional[int] = None,
        fail_on_close: bool = False,
        close_delay: float = 0.0,
    ) -> None:
        self.output_path = output_path
        self.close_delay = close_delay
        self.fail_on_start = fail_on_start
        self.fail_on_accept = fail_on_accept
        self.fail_on_close = fail_on_close

        self.chunks: List[bytes] = []
        self.started = False
        self.closing = False
        self.closed = False
        self._status: Optional[int] = None

    async def start(self) -> None:
        if self.fail_on_start:
            raise EncoderError("Failed to launch fake encoder")
        self.started = True

    async def accept(self, data: bytes) -> None:
        if self.fail_on_accept is not None and len(self.chunks) >= self.fail_on_accept:
            raise EncoderError(
                "Encoder rejected frame data",
                diagnostics="pipe:0: Invalid data found when processing input",
            )
        self.chunks.append(bytes(data))

    async def close(self) -> int:
        self.closing = True
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed = True
        self.output_path.write_bytes(b"".join(self.chunks))
        if self.fail_on_close:
            self._status = 1
            raise EncoderError(
                "Encoder exited abnormally",
                diagnostics="Conversion failed!",
                exit_status=1,
            )
        self._status = 0
        return 0

    def diagnostics(self) -> str:
        return ""

    def exit_status(self) -> Optional[int]:
        return self._status


class FakeEncoderFactory:
    """EncoderFactory that keeps every FakeEncoder it creates."""

    def __init__(self, **options) -> None:
        self.options = options
        self.encoders: List[FakeEncoder] = []

    def __call__(self, output_path: Path) -> FakeEncoder:
        encoder = FakeEncoder(output_path, **self.options)
        self.encoders.append(encoder)
        return encoder

    @property
    def last(self) -> FakeEncoder:
        return self.encoders[-1]


class FailingReader:
    """Reader whose connection breaks once its data runs out."""

    def __init__(self, data: bytes, error: Exception) -> None:
        self._data = data
        self._error = error

    async def readexactly(self, n: int) -> bytes:
        if len(self._data) < n:
            raise self._error
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


def make_reader(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    """StreamReader preloaded with data. Call from inside a running loop."""
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def build_stream(
    frames: List[float],
    commands: List[tuple] = (),
    variant=OPCODE_SPEEDS,
    end_of_stream: bool = True,
    payload: bytes = b"\xff\xd8jpeg\xff\xd9",
) -> bytes:
    """
    Interleave frames and commands by timestamp into one wire stream.

    Args:
        frames: Frame timestamps
        commands: (timestamp, opcode, left, right) tuples
    """
    messages = [(ts, 0, pack_video(ts, payload + str(ts).encode())) for ts in frames]
    for ts, opcode, left, right in commands:
        messages.append((ts, 1, pack_command(variant, ts, opcode, left, right)))
    messages.sort(key=lambda item: (item[0], item[1]))

    data = b"".join(packet for _, _, packet in messages)
    if end_of_stream:
        data += pack_end_of_stream(messages[-1][0] if messages else 0.0)
    return data


@pytest.fixture
def encoder_factory():
    """Provide a FakeEncoderFactory."""
    return FakeEncoderFactory()


@pytest.fixture
def output_root(tmp_path):
    """Provide an empty output root directory."""
    root = tmp_path / "recordings"
    root.mkdir()
    return root


@pytest.fixture
def session_dir(output_root):
    """Provide an empty session directory."""
    path = output_root / "session"
    path.mkdir()
    return path
