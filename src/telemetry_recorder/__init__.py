"""
Telemetry Recorder
==================

Records the multiplexed telemetry stream of a remote device (e.g. a mobile
robot) into video, a per-second sync index, and a command log.

Each device connection carries timestamped video frames and command
records. The recorder separates them, forwards frames to an external video
encoder, appends commands to a text log, and counts frames per wall-clock
second so video offsets can later be aligned with command events.

Components:
    - protocol: wire framing and FrameDecoder
    - sinks: VideoSink, CommandSink, encoder backends
    - stream: ConnectionSession, SessionRegistry, TelemetryServer
    - models: SessionResult and related status models

Example:
    from telemetry_recorder.config import settings
    from telemetry_recorder.main import create_server

    server = create_server(settings)
    await server.start()
    await server.serve_forever()
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
