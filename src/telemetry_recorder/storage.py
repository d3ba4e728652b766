"""
Output Storage
==============

Output directory layout and durable text-file helpers.

Layout:
    <output_root>/
        <session_id>/
            video.avi      - encoder output
            sync.txt       - "<second>,<count>" per non-empty second
            commands.txt   - "<timestamp>,<opcode>[,<left>,<right>]" per command

Every OS-level failure is converted to StorageError so the caller can scope
it to one connection.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from telemetry_recorder.errors import StorageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutputLayout:
    """File names inside a session directory."""

    video_filename: str = "video.avi"
    sync_filename: str = "sync.txt"
    command_filename: str = "commands.txt"


def create_output_root(root: Path) -> Path:
    """
    Create the shared output root.

    Raises:
        StorageError: The directory cannot be created (fatal at startup)
    """
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Cannot create output root {root}: {e}", stage="startup") from e
    return root


def create_session_dir(root: Path, session_id: str) -> Path:
    """
    Create the output directory for one session.

    Raises:
        StorageError: The directory cannot be created or already exists
    """
    path = root / session_id
    try:
        path.mkdir(parents=True, exist_ok=False)
    except OSError as e:
        raise StorageError(
            f"Cannot create session directory {path}: {e}",
            session_id=session_id,
        ) from e
    logger.debug(f"Created session directory: {path}")
    return path


def open_log(path: Path) -> TextIO:
    """Create (truncate) a text output file."""
    try:
        return open(path, "w", encoding="utf-8", newline="\n")
    except OSError as e:
        raise StorageError(f"Cannot create {path}: {e}") from e


def append_line(handle: TextIO, path: Path, line: str) -> None:
    """Append one line (newline added) to an open output file."""
    try:
        handle.write(line + "\n")
    except (OSError, ValueError) as e:
        raise StorageError(f"Cannot write to {path}: {e}") from e


def close_log(handle: TextIO, path: Path) -> None:
    """
    Flush, fsync and close an output file.

    The handle is closed even if flushing fails.
    """
    error = None
    try:
        handle.flush()
        os.fsync(handle.fileno())
    except (OSError, ValueError) as e:
        error = StorageError(f"Cannot flush {path}: {e}")
        error.__cause__ = e

    try:
        handle.close()
    except OSError as e:
        if error is None:
            error = StorageError(f"Cannot close {path}: {e}")
            error.__cause__ = e

    if error is not None:
        raise error
