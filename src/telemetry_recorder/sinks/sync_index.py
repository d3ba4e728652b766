"""
Sync Index
==========

Per-second frame counting for aligning video offsets with command times.

Algorithm:
    sec = floor(timestamp)

    if no current bucket:           start one at sec
    elif sec != current second:     finalize current (if non-empty), start sec
    count the frame

    at stream end:                  finalize current (if non-empty)

Because the video carries no timestamps of its own, a reader reconstructs
the frame offset of any wall-clock second by summing the counts of the
lines before it.

Example:
    frames at 10.1, 10.9, 11.0, 11.4 then end  ->  "10,2", "11,2"
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class SyncBucket:
    """Number of frames received during one wall-clock second."""

    second: int
    frame_count: int

    def to_line(self) -> str:
        return f"{self.second},{self.frame_count}"


class SyncIndex:
    """
    Incremental per-second frame counter.

    Exactly one bucket is current at a time. Callers first advance() to a
    frame's timestamp (which may hand back the finished previous bucket),
    then count_frame() once the frame has actually been delivered.

    Attributes:
        current_second: Second of the current bucket (None before any frame)
        current_count: Frames counted into the current bucket
        total_frames: Frames counted over the whole stream
    """

    def __init__(self) -> None:
        self.current_second: Optional[int] = None
        self.current_count: int = 0
        self.total_frames: int = 0

    def advance(self, timestamp: float) -> Optional[SyncBucket]:
        """
        Move the current bucket to the frame's second.

        Returns:
            The finished bucket when the second changed and the previous
            bucket was non-empty, otherwise None
        """
        second = math.floor(timestamp)

        if self.current_second is None:
            self.current_second = second
            return None

        if second == self.current_second:
            return None

        finished = self._finished_bucket()
        self.current_second = second
        self.current_count = 0
        return finished

    def count_frame(self) -> None:
        self.current_count += 1
        self.total_frames += 1

    def flush(self) -> Optional[SyncBucket]:
        """Finalize the current bucket at stream end (None if empty)."""
        finished = self._finished_bucket()
        self.current_count = 0
        return finished

    def _finished_bucket(self) -> Optional[SyncBucket]:
        if self.current_second is None or self.current_count == 0:
            return None
        return SyncBucket(self.current_second, self.current_count)
