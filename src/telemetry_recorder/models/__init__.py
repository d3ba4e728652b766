"""
Data Models
===========

Pydantic models for the telemetry recorder.

Models:
    Session:
        - SessionState: ACTIVE, COMPLETED, FAILED
        - EndReason: why a session stopped reading
        - SessionError: one connection-scoped failure
        - SessionResult: full status/outcome of a session
"""

from telemetry_recorder.models.session import (
    EndReason,
    SessionError,
    SessionResult,
    SessionState,
)

__all__ = [
    "EndReason",
    "SessionError",
    "SessionResult",
    "SessionState",
]
