"""
Session Models
==============

Pydantic models describing a recording session's status and outcome.

A SessionResult is what every ConnectionSession returns instead of raising:
the listener records it, logs it, and the status API serves it.

Example:
    result = await session.run()
    if not result.ok:
        for error in result.errors:
            print(error.stage, error.message)

    print(result.model_dump_json(indent=2))
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from telemetry_recorder.errors import RecorderError


class SessionState(str, Enum):
    """
    Lifecycle state of a session.

    Attributes:
        ACTIVE: Still reading from the connection or shutting down sinks
        COMPLETED: Ended and every sink closed cleanly
        FAILED: Ended with at least one connection-scoped error
    """

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EndReason(str, Enum):
    """Why the dispatch loop stopped reading."""

    END_OF_STREAM = "END_OF_STREAM"
    CONNECTION_CLOSED = "CONNECTION_CLOSED"
    FRAMING_ERROR = "FRAMING_ERROR"
    SINK_ERROR = "SINK_ERROR"
    CANCELLED = "CANCELLED"


class SessionError(BaseModel):
    """One connection-scoped failure."""

    kind: str = Field(..., description="Error class, e.g. FramingError")
    stage: str = Field(..., description="Pipeline stage that failed")
    message: str = Field(..., description="Human-readable cause")
    diagnostics: Optional[str] = Field(
        default=None,
        description="Encoder diagnostic output, when available",
    )

    @classmethod
    def from_error(cls, error: RecorderError) -> "SessionError":
        return cls(
            kind=type(error).__name__,
            stage=error.stage,
            message=error.message,
            diagnostics=getattr(error, "diagnostics", None) or None,
        )


class SessionResult(BaseModel):
    """
    Status of one recording session.

    Attributes:
        session_id: Unique session identifier
        peer: Remote address ("host:port")
        output_dir: Session output directory
        state: ACTIVE, COMPLETED or FAILED
        end_reason: Why reading stopped (None while active)
        frames: Video frames handed to the video sink
        commands: Command records handed to the command sink
        video_bytes: Frame payload bytes handed to the video sink
        started_at: UNIX time the session started
        finished_at: UNIX time both sinks confirmed shutdown
        errors: Every failure, in the order it was observed
    """

    session_id: str
    peer: Optional[str] = None
    output_dir: str
    state: SessionState = SessionState.ACTIVE
    end_reason: Optional[EndReason] = None
    frames: int = Field(default=0, ge=0)
    commands: int = Field(default=0, ge=0)
    video_bytes: int = Field(default=0, ge=0)
    started_at: float
    finished_at: Optional[float] = None
    errors: List[SessionError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at
