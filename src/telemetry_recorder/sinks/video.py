"""
Video Sink
==========

Streams frame bytes to the encoder and writes the per-second sync index.

Per frame:
    1. Advance the sync index to the frame's second (writing the finished
       bucket line if the second changed)
    2. Forward the payload, unmodified, to the encoder input
    3. Count the frame

On shutdown the last non-empty bucket is written, the encoder input is
closed, and the sink waits for the encoder to exit.

If the encoder fails, forwarding stops, the error (with the encoder's
diagnostics) is reported to the session, and the sync index is still
flushed for the frames that did reach the encoder.
"""

import logging
from pathlib import Path
from typing import Optional, TextIO

from telemetry_recorder.errors import EncoderError, RecorderError, StorageError
from telemetry_recorder.protocol.messages import FrameMessage
from telemetry_recorder.sinks.base import Sink
from telemetry_recorder.sinks.encoder import Encoder, EncoderFactory
from telemetry_recorder.sinks.sync_index import SyncBucket, SyncIndex
from telemetry_recorder.storage import append_line, close_log, open_log


logger = logging.getLogger(__name__)


class VideoSink(Sink[FrameMessage]):
    """
    Consumer of VIDEO messages for one session.

    Attributes:
        video_path: Encoder output file
        sync_path: Sync index file
        sync_index: Per-second frame counter
        bytes_forwarded: Payload bytes accepted by the encoder
    """

    kind = "video"

    def __init__(
        self,
        session_id: str,
        video_path: Path,
        sync_path: Path,
        encoder_factory: EncoderFactory,
    ) -> None:
        super().__init__(session_id)
        self.video_path = video_path
        self.sync_path = sync_path
        self.encoder_factory = encoder_factory
        self.sync_index = SyncIndex()
        self.bytes_forwarded: int = 0

        self._encoder: Optional[Encoder] = None
        self._sync_file: Optional[TextIO] = None

    async def open(self) -> None:
        self._sync_file = open_log(self.sync_path)
        encoder = self.encoder_factory(self.video_path)
        await encoder.start()
        self._encoder = encoder

    async def handle(self, item: FrameMessage) -> None:
        finished = self.sync_index.advance(item.timestamp)
        if finished is not None:
            self._write_bucket(finished)

        await self._encoder.accept(item.payload)

        self.sync_index.count_frame()
        self.bytes_forwarded += len(item.payload)

    async def close(self) -> None:
        failure: Optional[RecorderError] = None

        if self._sync_file is not None:
            try:
                final = self.sync_index.flush()
                if final is not None:
                    self._write_bucket(final)
            except StorageError as e:
                failure = e

        if self._encoder is not None:
            try:
                await self._encoder.close()
            except EncoderError as e:
                failure = failure or e
            self._encoder = None

        if self._sync_file is not None:
            try:
                close_log(self._sync_file, self.sync_path)
            except StorageError as e:
                failure = failure or e
            self._sync_file = None

        if failure is not None:
            raise failure

    def _write_bucket(self, bucket: SyncBucket) -> None:
        append_line(self._sync_file, self.sync_path, bucket.to_line())
        logger.debug(
            f"[{self.session_id}] second {bucket.second}: {bucket.frame_count} frames"
        )
