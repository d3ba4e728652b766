"""
Session Registry
================

Tracks active sessions and a bounded history of finished ones.

Used by the listener to record outcomes and by the status API to report
them. Mutated only from the event loop thread.
"""

import logging
import time
from collections import deque
from typing import Deque, Dict, List, Optional

from telemetry_recorder.errors import RecorderError
from telemetry_recorder.models.session import (
    SessionError,
    SessionResult,
    SessionState,
)
from telemetry_recorder.stream.session import ConnectionSession


logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    In-memory record of sessions.

    Attributes:
        history_size: Number of finished sessions kept
    """

    def __init__(self, history_size: int = 100) -> None:
        if history_size < 1:
            raise ValueError("history_size must be >= 1")

        self.history_size = history_size
        self._active: Dict[str, ConnectionSession] = {}
        self._history: Deque[SessionResult] = deque(maxlen=history_size)

        self.accepted: int = 0
        self.rejected: int = 0
        self.completed: int = 0
        self.failed: int = 0
        self.frames: int = 0
        self.commands: int = 0
        self.video_bytes: int = 0

    def register(self, session: ConnectionSession) -> None:
        self._active[session.session_id] = session
        self.accepted += 1

    def complete(self, result: SessionResult) -> None:
        """Move a finished session into the history."""
        self._active.pop(result.session_id, None)
        self._history.append(result)

        if result.state == SessionState.FAILED:
            self.failed += 1
        else:
            self.completed += 1

        self.frames += result.frames
        self.commands += result.commands
        self.video_bytes += result.video_bytes

    def reject(
        self,
        session_id: str,
        error: RecorderError,
        started_at: float,
        peer: Optional[str] = None,
    ) -> SessionResult:
        """Record a connection that failed before its session could start."""
        result = SessionResult(
            session_id=session_id,
            peer=peer,
            output_dir="",
            state=SessionState.FAILED,
            started_at=started_at,
            finished_at=started_at,
            errors=[SessionError.from_error(error)],
        )
        self._history.append(result)
        self.rejected += 1
        return result

    def fail(self, session: ConnectionSession, error: Exception) -> SessionResult:
        """Record a session whose handler crashed outside the session's own error handling."""
        base = session.result or session.snapshot()
        result = base.model_copy(update={
            "state": SessionState.FAILED,
            "finished_at": base.finished_at or time.time(),
            "errors": [
                *base.errors,
                SessionError(kind=type(error).__name__, stage="session", message=str(error)),
            ],
        })
        self.complete(result)
        return result

    def get(self, session_id: str) -> Optional[SessionResult]:
        session = self._active.get(session_id)
        if session is not None:
            return session.snapshot()
        for result in self._history:
            if result.session_id == session_id:
                return result
        return None

    def active(self) -> List[SessionResult]:
        return [session.snapshot() for session in self._active.values()]

    def recent(self, limit: Optional[int] = None) -> List[SessionResult]:
        """Finished sessions, newest first."""
        results = list(reversed(self._history))
        return results[:limit] if limit is not None else results

    def metrics(self) -> dict:
        return {
            "active_sessions": len(self._active),
            "sessions_accepted": self.accepted,
            "sessions_rejected": self.rejected,
            "sessions_completed": self.completed,
            "sessions_failed": self.failed,
            "frames_total": self.frames,
            "commands_total": self.commands,
            "video_bytes_total": self.video_bytes,
        }
