"""
Protocol Module
===============

Wire format of the device connection.

Components:
    - messages: FrameMessage, CommandRecord, MessageKind
    - framing: header layout, protocol variants, packing helpers
    - decoder: FrameDecoder (reads one message per call)

Example:
    from telemetry_recorder.protocol import FrameDecoder, get_variant

    decoder = FrameDecoder(variant=get_variant("opcode_speeds"))
    message = await decoder.read_message(reader)
"""

from telemetry_recorder.protocol.messages import CommandRecord, FrameMessage, MessageKind
from telemetry_recorder.protocol.framing import (
    END_OF_STREAM_FLAG,
    HEADER_SIZE,
    OPCODE_ONLY,
    OPCODE_SPEEDS,
    ProtocolVariant,
    get_variant,
    pack_command,
    pack_end_of_stream,
    pack_video,
)
from telemetry_recorder.protocol.decoder import FrameDecoder


__all__ = [
    # Messages
    "CommandRecord",
    "FrameMessage",
    "MessageKind",
    # Framing
    "END_OF_STREAM_FLAG",
    "HEADER_SIZE",
    "OPCODE_ONLY",
    "OPCODE_SPEEDS",
    "ProtocolVariant",
    "get_variant",
    "pack_command",
    "pack_end_of_stream",
    "pack_video",
    # Decoder
    "FrameDecoder",
]
