"""
Frame Decoder
=============

Reads one framed message at a time from a byte-oriented connection.

The decoder is stateless apart from its configuration: every call starts at
a message boundary and consumes exactly one message. It works with any
reader exposing an ``async readexactly(n)`` coroutine, which is what
``asyncio.StreamReader`` provides. ``readexactly`` already loops over
partial reads until the requested count is satisfied.

Outcomes of read_message():
    - FrameMessage(VIDEO | COMMAND | END_OF_STREAM)
    - None on a clean end-of-input before any header byte
    - FramingError for everything else (truncated header, truncated payload,
      oversize frame, non-finite timestamp, socket error, read deadline
      exceeded)

A payload is never returned partially: if the connection drops after a
header declared 1000 bytes and only 500 arrived, the caller gets a
FramingError and no message.
"""

import asyncio
import logging
import math
import struct
from typing import Optional, Protocol

from telemetry_recorder.errors import FramingError
from telemetry_recorder.protocol.framing import (
    END_OF_STREAM_FLAG,
    HEADER_FORMAT,
    HEADER_SIZE,
    LENGTH_FORMAT,
    LENGTH_SIZE,
    OPCODE_SPEEDS,
    ProtocolVariant,
    unpack_command,
)
from telemetry_recorder.protocol.messages import CommandRecord, FrameMessage, MessageKind


logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_BYTES = 16 * 1024 * 1024


class ByteReader(Protocol):
    """Anything that can read an exact number of bytes asynchronously."""

    async def readexactly(self, n: int) -> bytes:
        ...


class FrameDecoder:
    """
    Decodes framed messages from a connection.

    Thread Safety:
        Stateless between calls; one instance may serve any number of
        sequential reads on one connection.

    Attributes:
        variant: Protocol variant in effect (command bit, record layout)
        max_frame_bytes: Largest accepted video payload (0 = unlimited)
        read_timeout: Per-read deadline in seconds (None = wait forever)
    """

    def __init__(
        self,
        variant: ProtocolVariant = OPCODE_SPEEDS,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        read_timeout: Optional[float] = None,
    ) -> None:
        self.variant = variant
        self.max_frame_bytes = max_frame_bytes
        self.read_timeout = read_timeout or None

    async def read_message(self, reader: ByteReader) -> Optional[FrameMessage]:
        """
        Read the next message from the connection.

        Args:
            reader: Connection positioned at a message boundary

        Returns:
            The decoded message, or None on clean end-of-input

        Raises:
            FramingError: The stream ended or failed mid-message, or the
                          header declared an unacceptable frame
        """
        header = await self._read(reader, HEADER_SIZE, "header", allow_eof=True)
        if header is None:
            return None

        flags, timestamp = struct.unpack(HEADER_FORMAT, header)

        if not math.isfinite(timestamp):
            raise FramingError(f"Invalid timestamp {timestamp!r} in header (flags {flags:#04x})")

        if flags & END_OF_STREAM_FLAG:
            return FrameMessage(timestamp, MessageKind.END_OF_STREAM)

        if self.variant.is_command(flags):
            record = await self._read(reader, self.variant.command_size, "command record")
            return FrameMessage(timestamp, MessageKind.COMMAND, record)

        length_bytes = await self._read(reader, LENGTH_SIZE, "frame length")
        (length,) = struct.unpack(LENGTH_FORMAT, length_bytes)

        if self.max_frame_bytes and length > self.max_frame_bytes:
            raise FramingError(
                f"Declared frame size {length} bytes exceeds limit "
                f"of {self.max_frame_bytes} bytes"
            )

        payload = await self._read(reader, length, "frame payload")
        return FrameMessage(timestamp, MessageKind.VIDEO, payload)

    def decode_command(self, message: FrameMessage) -> CommandRecord:
        """Turn a COMMAND message into a CommandRecord."""
        return unpack_command(self.variant, message.timestamp, message.payload)

    async def _read(
        self,
        reader: ByteReader,
        size: int,
        what: str,
        allow_eof: bool = False,
    ) -> Optional[bytes]:
        try:
            if self.read_timeout is not None:
                return await asyncio.wait_for(reader.readexactly(size), self.read_timeout)
            return await reader.readexactly(size)

        except asyncio.IncompleteReadError as e:
            if allow_eof and not e.partial:
                return None
            raise FramingError(
                f"Connection closed while reading {what}: "
                f"got {len(e.partial)} of {size} bytes"
            ) from e

        except asyncio.TimeoutError as e:
            raise FramingError(
                f"No data for {self.read_timeout:.1f}s while reading {what}"
            ) from e

        except OSError as e:
            raise FramingError(f"I/O error while reading {what}: {e}") from e
