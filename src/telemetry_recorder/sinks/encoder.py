"""
Video Encoder
=============

Capability interface for the external video encoder, and the ffmpeg backend.

The video sink only needs four things from an encoder: push bytes in, close
the input, read what the encoder complained about, and learn how it exited.
Keeping that behind the Encoder protocol lets the sink's bucketing logic be
tested with an in-memory fake instead of a real process.

Design Rules:
    - Frame bytes are written unmodified, in call order
    - stderr is drained continuously so the encoder never blocks on it
    - Any failure surfaces as EncoderError carrying the captured diagnostics

What counts as a failure:
    Launch failure, a rejected write (broken pipe), exiting before the input
    is closed, and a nonzero exit status. Lines on stderr are never fatal by
    themselves, even when they mention an error: ffmpeg reports recoverable
    decode problems (a corrupt frame) that way and still produces a video.
    They are logged by severity and kept as diagnostics for the error raised
    if the process does fail.
"""

import asyncio
import logging
import re
import subprocess
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, Protocol

from telemetry_recorder.errors import EncoderError


logger = logging.getLogger(__name__)


class Encoder(Protocol):
    """
    Protocol for video encoder backends.

    Implemented by:
        - FfmpegEncoder (production, external process)
        - FakeEncoder (tests, in memory)
    """

    async def start(self) -> None:
        """Launch the encoder. Raises EncoderError on failure."""
        ...

    async def accept(self, data: bytes) -> None:
        """Append frame bytes to the encoder input. Raises EncoderError."""
        ...

    async def close(self) -> int:
        """Close the input and wait for exit. Raises EncoderError on bad exit."""
        ...

    def diagnostics(self) -> str:
        """Text captured from the encoder's diagnostic stream."""
        ...

    def exit_status(self) -> Optional[int]:
        """Exit code, or None while running."""
        ...


EncoderFactory = Callable[[Path], Encoder]


class FfmpegEncoder:
    """
    Encodes a stream of concatenated JPEG frames with ffmpeg.

    The process reads frames from stdin and writes the finished video to
    output_path. Its stderr is collected by a background task into a
    bounded line buffer.

    Attributes:
        output_path: Where ffmpeg writes the video
        executable: ffmpeg binary name or path
        bytes_written: Total frame bytes accepted so far
    """

    def __init__(
        self,
        output_path: Path,
        executable: str = "ffmpeg",
        input_format: str = "mjpeg",
        video_filter: Optional[str] = "vflip,hflip,crop=in_w:in_h/2",
        codec: str = "libx264",
        preset: str = "veryfast",
        pixel_format: str = "yuv420p",
        container: str = "avi",
        exit_timeout: float = 10.0,
        diagnostics_lines: int = 200,
    ) -> None:
        self.output_path = output_path
        self.executable = executable
        self.input_format = input_format
        self.video_filter = video_filter
        self.codec = codec
        self.preset = preset
        self.pixel_format = pixel_format
        self.container = container
        self.exit_timeout = exit_timeout

        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._diagnostics: Deque[str] = deque(maxlen=diagnostics_lines)
        self._closed: bool = False
        self._failed: bool = False
        self.bytes_written: int = 0

    def build_command(self) -> List[str]:
        """Assemble the ffmpeg command line."""
        command = [
            self.executable,
            "-nostats",
            "-f", self.input_format,
            "-i", "-",
        ]
        if self.video_filter:
            command += ["-vf", self.video_filter]
        command += [
            "-vcodec", self.codec,
            "-preset", self.preset,
            "-an",
            "-f", self.container,
            "-pix_fmt", self.pixel_format,
            "-y",
            str(self.output_path),
        ]
        return command

    async def start(self) -> None:
        command = self.build_command()
        logger.debug(f"Encoder command: {' '.join(command)}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            self._failed = True
            raise EncoderError(f"Failed to launch {self.executable}: {e}") from e

        self._stderr_task = asyncio.create_task(
            self._collect_diagnostics(),
            name=f"encoder-stderr-{self._process.pid}",
        )
        logger.info(f"Encoder started (pid={self._process.pid}): {self.output_path}")

    async def accept(self, data: bytes) -> None:
        process = self._require_process()

        if process.returncode is not None:
            raise await self._failure("Encoder exited while frames were still arriving")

        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            error = await self._failure(f"Encoder rejected frame data ({type(e).__name__}: {e})")
            raise error from e

        self.bytes_written += len(data)

    async def close(self) -> int:
        process = self._require_process()

        if self._closed:
            return process.returncode if process.returncode is not None else 0

        await self._shutdown_process()
        status = process.returncode

        logger.info(
            f"Encoder exited (pid={process.pid}, status={status}, "
            f"bytes={self.bytes_written}): {self.output_path}"
        )

        if status != 0 and not self._failed:
            self._failed = True
            raise EncoderError(
                "Encoder exited abnormally",
                diagnostics=self.diagnostics(),
                exit_status=status,
            )
        return status

    def diagnostics(self) -> str:
        return "\n".join(self._diagnostics)

    def exit_status(self) -> Optional[int]:
        if self._process is None:
            return None
        return self._process.returncode

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise EncoderError("Encoder was not started")
        return self._process

    async def _failure(self, message: str) -> EncoderError:
        """Stop the process and build an error with everything it printed."""
        self._failed = True
        await self._shutdown_process()
        return EncoderError(
            message,
            diagnostics=self.diagnostics(),
            exit_status=self.exit_status(),
        )

    async def _shutdown_process(self) -> None:
        """Close stdin, wait for exit (killing after the timeout), drain stderr."""
        process = self._require_process()
        self._closed = True

        if not process.stdin.is_closing():
            process.stdin.close()
        try:
            await process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"Encoder stdin already gone (pid={process.pid}): {e}")

        try:
            await asyncio.wait_for(process.wait(), timeout=self.exit_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Encoder did not exit within {self.exit_timeout:.1f}s, "
                f"killing pid {process.pid}"
            )
            process.kill()
            await process.wait()

        if self._stderr_task is not None:
            await self._stderr_task

    async def _collect_diagnostics(self) -> None:
        """Drain stderr line by line until the encoder closes it."""
        stream = self._process.stderr
        pending = b""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            pending += chunk
            *lines, pending = re.split(rb"[\r\n]", pending)
            for line in lines:
                self._record_line(line)
        if pending:
            self._record_line(pending)

    def _record_line(self, raw: bytes) -> None:
        message = raw.decode("utf-8", errors="replace").strip()
        if not message:
            return

        self._diagnostics.append(message)

        # Log by severity
        lowered = message.lower()
        if "error" in lowered or "fatal" in lowered:
            logger.error(f"Encoder [{self.output_path.parent.name}]: {message}")
        elif "warning" in lowered:
            logger.warning(f"Encoder [{self.output_path.parent.name}]: {message}")
        else:
            logger.debug(f"Encoder [{self.output_path.parent.name}]: {message}")


def ffmpeg_factory(**options) -> EncoderFactory:
    """
    Build an EncoderFactory producing FfmpegEncoders with fixed options.

    Example:
        factory = ffmpeg_factory(executable="/usr/bin/ffmpeg", video_filter=None)
        encoder = factory(session_dir / "video.avi")
    """

    def create(output_path: Path) -> FfmpegEncoder:
        return FfmpegEncoder(output_path, **options)

    return create
