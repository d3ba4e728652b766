#!/usr/bin/env python3
"""
Device Simulator
================

Standalone script that plays the device side of a recording session.

This script:
    1. Connects to a running telemetry recorder
    2. Sends video frames at a fixed rate (JPEG files from a directory, or
       a synthetic placeholder payload)
    3. Interleaves drive commands
    4. Ends with an end-of-stream message (unless --no-eos)
    5. Reports what was sent

Prerequisites:
    - The recorder must be listening at the given host/port

Usage:
    python scripts/send_recording.py --duration 10
    python scripts/send_recording.py --frames-dir ./jpegs --fps 15
    python scripts/send_recording.py --variant opcode_only --no-eos
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from itertools import cycle
from pathlib import Path
from typing import Iterator, List

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from telemetry_recorder.protocol.framing import (
    VARIANTS,
    get_variant,
    pack_command,
    pack_end_of_stream,
    pack_video,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Smallest payload that still starts and ends like a JPEG
PLACEHOLDER_FRAME = b"\xff\xd8\xff\xe0" + b"\x00" * 64 + b"\xff\xd9"

# Drive opcodes cycled through by the simulator
DRIVE_COMMANDS = [
    (ord("f"), 120, 120),
    (ord("l"), -80, 80),
    (ord("r"), 80, -80),
    (ord("s"), 0, 0),
]


def load_frames(frames_dir: str) -> List[bytes]:
    paths = sorted(Path(frames_dir).glob("*.jp*g"))
    if not paths:
        raise SystemExit(f"No JPEG files found in {frames_dir}")
    logger.info(f"Loaded {len(paths)} frames from {frames_dir}")
    return [path.read_bytes() for path in paths]


def frame_source(frames_dir: str) -> Iterator[bytes]:
    if frames_dir:
        return cycle(load_frames(frames_dir))
    return cycle([PLACEHOLDER_FRAME])


async def run_device(
    host: str,
    port: int,
    variant_name: str,
    duration: float,
    fps: float,
    command_every: int,
    frames_dir: str,
    send_eos: bool,
) -> dict:
    """
    Stream one session to the recorder.

    Args:
        host: Recorder host
        port: Recorder device port
        variant_name: Protocol variant to encode commands with
        duration: Seconds to stream
        fps: Video frames per second
        command_every: Send a command after every N frames (0 = never)
        frames_dir: Directory of JPEG files (empty = placeholder payload)
        send_eos: Finish with an end-of-stream message

    Returns:
        Counts of what was sent
    """
    variant = get_variant(variant_name)
    frames = frame_source(frames_dir)
    commands = cycle(DRIVE_COMMANDS)

    logger.info("=" * 60)
    logger.info(f"Connecting to {host}:{port} (variant={variant.name})")
    logger.info(f"Duration: {duration}s at {fps} fps")
    logger.info("=" * 60)

    reader, writer = await asyncio.open_connection(host, port)

    stats = {"frames": 0, "commands": 0, "bytes": 0}
    interval = 1.0 / fps
    deadline = time.monotonic() + duration

    try:
        while time.monotonic() < deadline:
            packet = pack_video(time.time(), next(frames))
            writer.write(packet)
            stats["frames"] += 1
            stats["bytes"] += len(packet)

            if command_every and stats["frames"] % command_every == 0:
                opcode, left, right = next(commands)
                packet = pack_command(variant, time.time(), opcode, left, right)
                writer.write(packet)
                stats["commands"] += 1
                stats["bytes"] += len(packet)

            await writer.drain()
            await asyncio.sleep(interval)

        if send_eos:
            writer.write(pack_end_of_stream(time.time()))
            await writer.drain()
            logger.info("Sent end of stream")

    finally:
        writer.close()
        await writer.wait_closed()

    return stats


def main():
    parser = argparse.ArgumentParser(
        description="Simulate a device streaming to the telemetry recorder"
    )
    parser.add_argument("--host", default="127.0.0.1", help="Recorder host")
    parser.add_argument("--port", type=int, default=8080, help="Recorder device port")
    parser.add_argument(
        "--variant",
        default="opcode_speeds",
        choices=sorted(VARIANTS),
        help="Protocol variant",
    )
    parser.add_argument("--duration", type=float, default=5.0, help="Seconds to stream")
    parser.add_argument("--fps", type=float, default=10.0, help="Frames per second")
    parser.add_argument(
        "--command-every",
        type=int,
        default=5,
        help="Send a command after every N frames (0 disables commands)",
    )
    parser.add_argument("--frames-dir", default="", help="Directory of JPEG frames")
    parser.add_argument(
        "--no-eos",
        action="store_true",
        help="Close the connection without an end-of-stream message",
    )

    args = parser.parse_args()

    try:
        stats = asyncio.run(run_device(
            host=args.host,
            port=args.port,
            variant_name=args.variant,
            duration=args.duration,
            fps=args.fps,
            command_every=args.command_every,
            frames_dir=args.frames_dir,
            send_eos=not args.no_eos,
        ))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Connection failed: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info(f"Frames sent: {stats['frames']}")
    logger.info(f"Commands sent: {stats['commands']}")
    logger.info(f"Bytes sent: {stats['bytes']}")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
