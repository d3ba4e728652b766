"""
Recorder Errors
===============

Exception hierarchy for the telemetry recorder.

Every error is scoped to the single connection that produced it. The
listener catches these at the session boundary and records them in the
session's result; none of them is allowed to stop the process, except a
StorageError raised while preparing the shared output root at startup.

Hierarchy:
    RecorderError
        FramingError  - malformed header, oversize frame, I/O failure mid-message
        EncoderError  - encoder failed to launch, rejected a write, exited abnormally
        StorageError  - cannot create or write an output file or directory
"""

from typing import Optional


class RecorderError(Exception):
    """
    Base class for connection-scoped recorder failures.

    Attributes:
        session_id: Session that produced the error (None before one exists)
        stage: Pipeline stage that failed ("decoder", "video", "command", ...)
    """

    default_stage = "recorder"

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.stage = stage or self.default_stage

    def bind(self, session_id: str) -> "RecorderError":
        """Attach the session id if the raiser did not know it."""
        if self.session_id is None:
            self.session_id = session_id
        return self

    def __str__(self) -> str:
        prefix = f"[{self.session_id}] " if self.session_id else ""
        return f"{prefix}{self.stage}: {self.message}"


class FramingError(RecorderError):
    """The byte stream violated the wire framing."""

    default_stage = "decoder"


class EncoderError(RecorderError):
    """
    The external video encoder failed.

    Attributes:
        diagnostics: Text captured from the encoder's diagnostic stream
        exit_status: Encoder exit code, if it exited
    """

    default_stage = "encoder"

    def __init__(
        self,
        message: str,
        diagnostics: str = "",
        exit_status: Optional[int] = None,
        session_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message, session_id=session_id, stage=stage)
        self.diagnostics = diagnostics
        self.exit_status = exit_status

    def __str__(self) -> str:
        text = super().__str__()
        if self.exit_status is not None:
            text += f" (exit status {self.exit_status})"
        if self.diagnostics:
            text += f"\n{self.diagnostics}"
        return text


class StorageError(RecorderError):
    """An output file or directory could not be created or written."""

    default_stage = "storage"
