"""
Sinks Module
============

Per-session consumer tasks that durably persist one kind of record.

Components:
    - RendezvousChannel: single-slot handoff feeding each sink
    - Sink: worker base class (inbox, lifecycle, shutdown barrier)
    - VideoSink: forwards frames to the encoder, writes the sync index
    - CommandSink: appends command lines to the command log
    - SyncIndex: per-second frame counting
    - Encoder / FfmpegEncoder: external encoder capability and backend
"""

from telemetry_recorder.sinks.channel import ChannelClosed, RendezvousChannel
from telemetry_recorder.sinks.base import SHUTDOWN, Sink
from telemetry_recorder.sinks.command import CommandSink, format_command
from telemetry_recorder.sinks.encoder import Encoder, EncoderFactory, FfmpegEncoder, ffmpeg_factory
from telemetry_recorder.sinks.sync_index import SyncBucket, SyncIndex
from telemetry_recorder.sinks.video import VideoSink


__all__ = [
    "ChannelClosed",
    "RendezvousChannel",
    "SHUTDOWN",
    "Sink",
    "CommandSink",
    "format_command",
    "Encoder",
    "EncoderFactory",
    "FfmpegEncoder",
    "ffmpeg_factory",
    "SyncBucket",
    "SyncIndex",
    "VideoSink",
]
