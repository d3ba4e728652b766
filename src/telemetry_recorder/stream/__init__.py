"""
Stream Module
=============

Connection handling for device streams.

This module provides the ingestion layer of the telemetry recorder:
    - ConnectionSession: decode/dispatch/shutdown loop for one connection
    - SessionRegistry: active sessions and recent results
    - TelemetryServer: TCP listener spawning one session per connection

Example:
    from telemetry_recorder.stream import TelemetryServer

    server = TelemetryServer(
        host="0.0.0.0",
        port=8080,
        output_root=Path("./recordings"),
        decoder=FrameDecoder(),
        encoder_factory=ffmpeg_factory(),
    )
    await server.start()
    await server.serve_forever()
"""

from telemetry_recorder.stream.session import ConnectionSession, SessionMetrics
from telemetry_recorder.stream.registry import SessionRegistry
from telemetry_recorder.stream.listener import TelemetryServer


__all__ = [
    "ConnectionSession",
    "SessionMetrics",
    "SessionRegistry",
    "TelemetryServer",
]
