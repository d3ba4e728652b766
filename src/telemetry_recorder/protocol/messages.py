"""
Message Data Model
==================

Decoded wire messages passed from the decoder to the sinks.

Design Rules:
    - These are the ONLY message formats passed to the sinks
    - Does NOT decode or manipulate image data
    - Immutable (frozen) so a message cannot change after dispatch
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MessageKind(str, Enum):
    """Kind of a framed message, selected by the header flag byte."""

    VIDEO = "video"
    COMMAND = "command"
    END_OF_STREAM = "end_of_stream"


@dataclass(frozen=True, slots=True)
class FrameMessage:
    """
    One framed message read from the connection.

    Attributes:
        timestamp: Wall-clock seconds since epoch (fractional)
        kind: VIDEO, COMMAND or END_OF_STREAM
        payload: Raw payload bytes (JPEG data or the command record);
                 empty for END_OF_STREAM
    """

    timestamp: float
    kind: MessageKind
    payload: bytes = b""

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full payload."""
        return (
            f"FrameMessage(kind={self.kind.value}, "
            f"timestamp={self.timestamp:.3f}, "
            f"payload={len(self.payload)} bytes)"
        )


@dataclass(frozen=True, slots=True)
class CommandRecord:
    """
    A decoded command message.

    Attributes:
        timestamp: Wall-clock seconds since epoch
        opcode: Command byte (0-255)
        left_speed: Left wheel speed, None when the protocol variant omits speeds
        right_speed: Right wheel speed, None when the protocol variant omits speeds
    """

    timestamp: float
    opcode: int
    left_speed: Optional[int] = None
    right_speed: Optional[int] = None

    @property
    def has_speeds(self) -> bool:
        return self.left_speed is not None and self.right_speed is not None
