"""
Command Sink
============

Appends command records to the session's command log, in arrival order.

Line format:
    <timestamp, 2 decimals>,<opcode>[,<left speed>,<right speed>]

    1760654823.41,f,120,120
    1760654824.02,s,0,0

The opcode is written as its ASCII character when printable ("char"
style, matching what devices send for drive commands) and as a decimal
number otherwise, or always as a number with the "int" style. Commas are
never written as characters so the line stays splittable.
"""

import logging
from pathlib import Path
from typing import Optional, TextIO

from telemetry_recorder.protocol.messages import CommandRecord
from telemetry_recorder.sinks.base import Sink
from telemetry_recorder.storage import append_line, close_log, open_log


logger = logging.getLogger(__name__)

OPCODE_STYLES = ("char", "int")


def format_opcode(opcode: int, style: str = "char") -> str:
    if style == "char" and 0x20 < opcode < 0x7F and opcode != ord(","):
        return chr(opcode)
    return str(opcode)


def format_command(
    record: CommandRecord,
    include_speeds: bool = True,
    opcode_style: str = "char",
) -> str:
    """Render one command record as a log line (without newline)."""
    line = f"{record.timestamp:.2f},{format_opcode(record.opcode, opcode_style)}"
    if include_speeds:
        line += f",{record.left_speed or 0},{record.right_speed or 0}"
    return line


class CommandSink(Sink[CommandRecord]):
    """
    Consumer of COMMAND records for one session.

    Attributes:
        path: Command log file
        include_speeds: Whether lines carry the left/right speed fields
        opcode_style: "char" or "int"
    """

    kind = "command"

    def __init__(
        self,
        session_id: str,
        path: Path,
        include_speeds: bool = True,
        opcode_style: str = "char",
    ) -> None:
        super().__init__(session_id)
        if opcode_style not in OPCODE_STYLES:
            raise ValueError(f"Unknown opcode style: {opcode_style!r}")

        self.path = path
        self.include_speeds = include_speeds
        self.opcode_style = opcode_style
        self._file: Optional[TextIO] = None

    async def open(self) -> None:
        self._file = open_log(self.path)

    async def handle(self, item: CommandRecord) -> None:
        append_line(
            self._file,
            self.path,
            format_command(item, self.include_speeds, self.opcode_style),
        )

    async def close(self) -> None:
        if self._file is None:
            return
        handle, self._file = self._file, None
        close_log(handle, self.path)
