"""
Wire Framing
============

Header layout, protocol variants and packing helpers.

Message Structure:
==================

    ┌──────────────────────────────────────────────────────────┐
    │ HEADER (9 bytes)                                         │
    ├──────────────────────────────────────────────────────────┤
    │ flags        │ 1 byte  │ unsigned char │ see below       │
    │ timestamp    │ 8 bytes │ double (LE)   │ Unix timestamp  │
    ├──────────────────────────────────────────────────────────┤
    │ END OF STREAM (flags & 0x80): no payload                 │
    ├──────────────────────────────────────────────────────────┤
    │ COMMAND (flags & command_flag): fixed-size record        │
    │   opcode_speeds: opcode (B) + left (h) + right (h)       │
    │   opcode_only:   opcode (B)                              │
    ├──────────────────────────────────────────────────────────┤
    │ VIDEO (otherwise)                                        │
    │ length       │ 4 bytes │ unsigned int (LE)               │
    │ jpeg_bytes   │ [length] bytes                            │
    └──────────────────────────────────────────────────────────┘

The bit that marks a command, and the size of the command record, changed
between device firmware revisions without a version marker. The variant is
therefore fixed by configuration and never inferred from the stream.
"""

import struct
from dataclasses import dataclass
from typing import Optional

from telemetry_recorder.protocol.messages import CommandRecord


# < = little-endian, B = flags, d = timestamp
HEADER_FORMAT = "<Bd"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # = 9 bytes

LENGTH_FORMAT = "<I"
LENGTH_SIZE = struct.calcsize(LENGTH_FORMAT)  # = 4 bytes

END_OF_STREAM_FLAG = 0x80


@dataclass(frozen=True, slots=True)
class ProtocolVariant:
    """
    One revision of the device protocol.

    Attributes:
        name: Configuration name of the variant
        command_flag: Flag bit marking a command message
        command_format: struct format of the command record
    """

    name: str
    command_flag: int
    command_format: str

    @property
    def command_size(self) -> int:
        return struct.calcsize(self.command_format)

    @property
    def carries_speeds(self) -> bool:
        return self.command_size > 1

    def is_command(self, flags: int) -> bool:
        return bool(flags & self.command_flag)

    def with_command_flag(self, command_flag: Optional[int]) -> "ProtocolVariant":
        """Return a copy using a different command bit (None keeps this one)."""
        if command_flag is None or command_flag == self.command_flag:
            return self
        return ProtocolVariant(
            name=self.name,
            command_flag=command_flag,
            command_format=self.command_format,
        )


OPCODE_SPEEDS = ProtocolVariant(
    name="opcode_speeds",
    command_flag=0x01,
    command_format="<Bhh",
)

OPCODE_ONLY = ProtocolVariant(
    name="opcode_only",
    command_flag=0x02,
    command_format="<B",
)

VARIANTS = {variant.name: variant for variant in (OPCODE_SPEEDS, OPCODE_ONLY)}


def get_variant(name: str, command_flag: Optional[int] = None) -> ProtocolVariant:
    """
    Look up a protocol variant by name.

    Args:
        name: "opcode_speeds" or "opcode_only"
        command_flag: Optional override of the command bit

    Raises:
        ValueError: Unknown variant name, or a command bit that collides
                    with the end-of-stream bit
    """
    try:
        variant = VARIANTS[name]
    except KeyError:
        raise ValueError(
            f"Unknown protocol variant: {name!r} "
            f"(expected one of {sorted(VARIANTS)})"
        ) from None

    variant = variant.with_command_flag(command_flag)
    if variant.command_flag & END_OF_STREAM_FLAG or not 0 < variant.command_flag <= 0xFF:
        raise ValueError(f"Invalid command flag: {variant.command_flag:#04x}")
    return variant


def unpack_command(
    variant: ProtocolVariant, timestamp: float, payload: bytes
) -> CommandRecord:
    """Decode a command record payload into a CommandRecord."""
    values = struct.unpack(variant.command_format, payload)
    if variant.carries_speeds:
        opcode, left, right = values
        return CommandRecord(timestamp, opcode, left, right)
    return CommandRecord(timestamp, values[0])


# =============================================================================
# Packing helpers (device side)
# =============================================================================


def pack_header(flags: int, timestamp: float) -> bytes:
    return struct.pack(HEADER_FORMAT, flags, timestamp)


def pack_video(timestamp: float, jpeg_bytes: bytes) -> bytes:
    """Frame one video payload."""
    return (
        pack_header(0, timestamp)
        + struct.pack(LENGTH_FORMAT, len(jpeg_bytes))
        + jpeg_bytes
    )


def pack_command(
    variant: ProtocolVariant,
    timestamp: float,
    opcode: int,
    left_speed: int = 0,
    right_speed: int = 0,
) -> bytes:
    """Frame one command record for the given variant."""
    if variant.carries_speeds:
        record = struct.pack(variant.command_format, opcode, left_speed, right_speed)
    else:
        record = struct.pack(variant.command_format, opcode)
    return pack_header(variant.command_flag, timestamp) + record


def pack_end_of_stream(timestamp: float = 0.0) -> bytes:
    return pack_header(END_OF_STREAM_FLAG, timestamp)
