"""
Sink Worker
===========

Base class for the per-session consumer tasks.

A sink owns one RendezvousChannel inbox and everything it writes to (files,
encoder pipe). Nothing else touches that state, so no locking is needed.

Lifecycle:
    start()  - spawn run() as an asyncio task
    run()    - open outputs, then handle items until the shutdown marker
    stop()   - shutdown barrier: hand over the marker, then wait until the
               task has flushed and closed everything

The shutdown marker travels through the same single-slot inbox as the data,
so it can never overtake an item the session already handed over.

On failure the sink records the error, closes its inbox (which fails the
session's pending send instead of leaving it blocked), and still runs its
close() to flush whatever state is valid.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

from telemetry_recorder.errors import RecorderError
from telemetry_recorder.sinks.channel import ChannelClosed, RendezvousChannel


logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Shutdown:
    """Marker telling a sink to flush and exit."""

    def __repr__(self) -> str:
        return "SHUTDOWN"


SHUTDOWN = _Shutdown()


class Sink(ABC, Generic[T]):
    """
    Long-running consumer of one kind of record.

    Subclasses implement open(), handle() and close().

    Attributes:
        kind: Short sink name used in logs and task names
        session_id: Owning session
        inbox: Channel the session sends records into
        records_handled: Records successfully handled
        error: First failure, if any
    """

    kind = "sink"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.inbox: RendezvousChannel = RendezvousChannel(f"{session_id}/{self.kind}")
        self.records_handled: int = 0
        self.error: Optional[RecorderError] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @abstractmethod
    async def open(self) -> None:
        """Acquire output resources."""

    @abstractmethod
    async def handle(self, item: T) -> None:
        """Persist one record."""

    @abstractmethod
    async def close(self) -> None:
        """Flush and release output resources."""

    def start(self) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError(f"{self.kind} sink already started")
        self._task = asyncio.create_task(
            self.run(),
            name=f"{self.kind}-sink-{self.session_id}",
        )
        return self._task

    async def stop(self) -> Optional[RecorderError]:
        """
        Shutdown barrier.

        Returns only after the sink has closed its outputs.

        Returns:
            The sink's failure, or None if it finished cleanly
        """
        if self._task is None:
            return self.error

        try:
            await self.inbox.send(SHUTDOWN)
        except ChannelClosed:
            # Already stopped on its own failure; the task is finishing
            pass

        # The task must finish closing even if this caller is cancelled
        await asyncio.shield(self._task)
        return self.error

    async def run(self) -> None:
        """Worker loop. Never raises RecorderError; failures land in self.error."""
        try:
            await self.open()
            logger.debug(f"[{self.session_id}] {self.kind} sink opened")

            while True:
                item = await self.inbox.receive()
                if item is SHUTDOWN:
                    break
                await self.handle(item)
                self.records_handled += 1

        except RecorderError as e:
            self._fail(e)

        except Exception as e:
            logger.exception(f"[{self.session_id}] {self.kind} sink crashed")
            self._fail(RecorderError(f"Unexpected error: {e}", stage=self.kind))

        finally:
            self.inbox.close(self.error)
            await self._close_outputs()

    async def _close_outputs(self) -> None:
        try:
            await self.close()
        except RecorderError as e:
            if self.error is None:
                self._fail(e)
            else:
                logger.error(
                    f"[{self.session_id}] {self.kind} sink also failed while closing: {e}"
                )

        logger.info(
            f"[{self.session_id}] {self.kind} sink closed "
            f"(records={self.records_handled}, failed={self.error is not None})"
        )

    def _fail(self, error: RecorderError) -> None:
        error.bind(self.session_id)
        if self.error is None:
            self.error = error
        self.inbox.close(error)
        logger.error(f"[{self.session_id}] {self.kind} sink failed: {error}")
