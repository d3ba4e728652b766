"""
Connection Session
==================

Decode-dispatch-shutdown loop for one device connection.

This module provides the ConnectionSession class which:
    - Starts a VideoSink and a CommandSink as independent tasks
    - Reads messages with FrameDecoder until end-of-stream, clean close,
      or a framing error
    - Hands each message to its sink over a rendezvous channel, so a slow
      sink throttles the socket read rate
    - Drives the shutdown barrier: the command sink, then the video sink,
      must confirm they have flushed and closed before run() returns
    - Returns a typed SessionResult instead of raising

Design Rules:
    - Does NOT validate command semantics
    - Does NOT decode image data
    - Every failure is scoped to this connection
    - Per-kind wire order is preserved; nothing decoded is dropped silently
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import List, Optional

from telemetry_recorder.errors import FramingError, RecorderError
from telemetry_recorder.models.session import (
    EndReason,
    SessionError,
    SessionResult,
    SessionState,
)
from telemetry_recorder.protocol.decoder import ByteReader, FrameDecoder
from telemetry_recorder.protocol.messages import FrameMessage, MessageKind
from telemetry_recorder.sinks.channel import ChannelClosed
from telemetry_recorder.sinks.command import CommandSink
from telemetry_recorder.sinks.encoder import EncoderFactory
from telemetry_recorder.sinks.video import VideoSink
from telemetry_recorder.storage import OutputLayout


logger = logging.getLogger(__name__)


class SessionMetrics:
    """Counters for one session."""

    __slots__ = (
        "frames_dispatched",
        "commands_dispatched",
        "video_bytes",
        "last_timestamp",
    )

    def __init__(self) -> None:
        self.frames_dispatched: int = 0
        self.commands_dispatched: int = 0
        self.video_bytes: int = 0
        self.last_timestamp: float = 0.0

    def to_dict(self) -> dict:
        return {
            "frames_dispatched": self.frames_dispatched,
            "commands_dispatched": self.commands_dispatched,
            "video_bytes": self.video_bytes,
            "last_timestamp": self.last_timestamp,
        }


class ConnectionSession:
    """
    Owns one connection from first byte to closed output files.

    Attributes:
        session_id: Unique session identifier
        output_dir: Directory holding this session's outputs
        decoder: FrameDecoder for the configured protocol variant
        video_sink: Consumer of video frames
        command_sink: Consumer of command records
        metrics: Dispatch counters
        result: Final SessionResult, set once run() has finished

    Example:
        session = ConnectionSession(
            session_id=new_session_id(),
            reader=reader,
            output_dir=session_dir,
            decoder=FrameDecoder(),
            encoder_factory=ffmpeg_factory(),
        )
        result = await session.run()
    """

    def __init__(
        self,
        session_id: str,
        reader: ByteReader,
        output_dir: Path,
        decoder: FrameDecoder,
        encoder_factory: EncoderFactory,
        layout: OutputLayout = OutputLayout(),
        opcode_style: str = "char",
        peer: Optional[str] = None,
    ) -> None:
        self.session_id = session_id
        self.reader = reader
        self.output_dir = output_dir
        self.decoder = decoder
        self.peer = peer

        self.video_sink = VideoSink(
            session_id,
            video_path=output_dir / layout.video_filename,
            sync_path=output_dir / layout.sync_filename,
            encoder_factory=encoder_factory,
        )
        self.command_sink = CommandSink(
            session_id,
            path=output_dir / layout.command_filename,
            include_speeds=decoder.variant.carries_speeds,
            opcode_style=opcode_style,
        )

        self.metrics = SessionMetrics()
        self.started_at: float = time.time()
        self.result: Optional[SessionResult] = None
        self._errors: List[RecorderError] = []

    async def run(self) -> SessionResult:
        """
        Run the session to completion.

        Returns only after both sinks have closed their outputs (and the
        encoder has exited). If the task is cancelled, during dispatch or
        during the shutdown barrier itself, the sinks are still shut down
        completely before the cancellation propagates.
        """
        logger.info(
            f"[{self.session_id}] Session started "
            f"(peer={self.peer}, output={self.output_dir})"
        )

        self.command_sink.start()
        self.video_sink.start()

        end_reason = EndReason.CANCELLED
        cancelled = False
        try:
            end_reason = await self._dispatch()
        finally:
            cancelled = await self._shutdown_shielded()
            self.result = self._build_result(end_reason)
            self._log_result(self.result)

        if cancelled:
            raise asyncio.CancelledError()
        return self.result

    def snapshot(self) -> SessionResult:
        """Current status (final result once finished)."""
        if self.result is not None:
            return self.result
        return SessionResult(
            session_id=self.session_id,
            peer=self.peer,
            output_dir=str(self.output_dir),
            state=SessionState.ACTIVE,
            frames=self.metrics.frames_dispatched,
            commands=self.metrics.commands_dispatched,
            video_bytes=self.metrics.video_bytes,
            started_at=self.started_at,
        )

    async def _dispatch(self) -> EndReason:
        """Read and route messages until the stream ends or fails."""
        try:
            while True:
                message = await self._next_message()

                if message is None:
                    logger.info(f"[{self.session_id}] Connection closed by peer")
                    return EndReason.CONNECTION_CLOSED

                if message.kind is MessageKind.END_OF_STREAM:
                    logger.info(f"[{self.session_id}] End of stream received")
                    return EndReason.END_OF_STREAM

                if message.kind is MessageKind.VIDEO:
                    await self.video_sink.inbox.send(message)
                    self.metrics.frames_dispatched += 1
                    self.metrics.video_bytes += len(message.payload)
                else:
                    record = self.decoder.decode_command(message)
                    await self.command_sink.inbox.send(record)
                    self.metrics.commands_dispatched += 1

                self.metrics.last_timestamp = message.timestamp

        except FramingError as e:
            e.bind(self.session_id)
            self._errors.append(e)
            logger.error(f"Framing error, aborting session: {e}")
            return EndReason.FRAMING_ERROR

        except ChannelClosed as e:
            logger.warning(
                f"[{self.session_id}] Sink '{e.name}' stopped accepting records, "
                f"aborting session"
            )
            return EndReason.SINK_ERROR

    async def _next_message(self) -> Optional[FrameMessage]:
        """
        Read the next message, unless a sink stops first.

        A sink task only finishes before shutdown when it has failed, so a
        finished sink ends the session even if the peer only sends the
        other kind of message (or nothing at all).

        Raises:
            ChannelClosed: A sink failed before or during the read
            FramingError: From the decoder
        """
        sink_tasks = [sink.task for sink in (self.command_sink, self.video_sink)]
        self._raise_if_sink_stopped()

        read = asyncio.ensure_future(self.decoder.read_message(self.reader))
        try:
            done, _ = await asyncio.wait(
                [read, *sink_tasks],
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            read.cancel()
            raise

        if read in done:
            return read.result()

        read.cancel()
        await asyncio.wait([read])
        if not read.cancelled() and read.exception() is not None:
            logger.debug(
                f"[{self.session_id}] Read abandoned after sink failure: {read.exception()}"
            )
        self._raise_if_sink_stopped()
        raise RuntimeError("read abandoned while both sinks are running")

    def _raise_if_sink_stopped(self) -> None:
        for sink in (self.command_sink, self.video_sink):
            if not sink.running:
                raise ChannelClosed(sink.inbox.name, sink.error)

    async def _shutdown_shielded(self) -> bool:
        """
        Run the shutdown barrier to completion, whatever gets cancelled.

        Returns:
            True if a cancellation arrived while waiting
        """
        shutdown = asyncio.ensure_future(self._shutdown())
        cancelled = False
        while True:
            try:
                await asyncio.shield(shutdown)
                return cancelled
            except asyncio.CancelledError:
                if shutdown.done():
                    raise
                cancelled = True
                logger.info(
                    f"[{self.session_id}] Cancelled during shutdown, "
                    f"waiting for sinks to close"
                )

    async def _shutdown(self) -> None:
        """Shutdown barrier: each sink flushes and closes before the next."""
        for sink in (self.command_sink, self.video_sink):
            error = await sink.stop()
            if error is not None:
                self._errors.append(error)

    def _build_result(self, end_reason: EndReason) -> SessionResult:
        return SessionResult(
            session_id=self.session_id,
            peer=self.peer,
            output_dir=str(self.output_dir),
            state=SessionState.FAILED if self._errors else SessionState.COMPLETED,
            end_reason=end_reason,
            frames=self.metrics.frames_dispatched,
            commands=self.metrics.commands_dispatched,
            video_bytes=self.metrics.video_bytes,
            started_at=self.started_at,
            finished_at=time.time(),
            errors=[SessionError.from_error(error) for error in self._errors],
        )

    def _log_result(self, result: SessionResult) -> None:
        summary = (
            f"[{self.session_id}] Session {result.state.value.lower()} "
            f"(reason={result.end_reason.value}, frames={result.frames}, "
            f"commands={result.commands}, bytes={result.video_bytes})"
        )
        if result.ok:
            logger.info(summary)
        else:
            logger.error(summary)
            for error in self._errors:
                logger.error(f"  {type(error).__name__}: {error}")
