"""
Telemetry Recorder Main Application
===================================

Entry point for the telemetry recorder.

The device listener (TelemetryServer) runs inside the lifespan of a small
FastAPI status application. With status.enabled = false the listener runs
on its own.

Endpoints:
    GET  /                      - Service information
    GET  /health                - Liveness probe (is process alive?)
    GET  /ready                 - Readiness probe (is the listener accepting?)
    GET  /metrics               - Aggregate session counters
    GET  /sessions              - Active sessions and recent results
    GET  /sessions/{session_id} - One session's status
"""

import asyncio
import logging
import signal
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from telemetry_recorder import __version__
from telemetry_recorder.config import Settings, settings
from telemetry_recorder.errors import StorageError
from telemetry_recorder.protocol.decoder import FrameDecoder
from telemetry_recorder.sinks.encoder import EncoderFactory, ffmpeg_factory
from telemetry_recorder.stream import SessionRegistry, TelemetryServer


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_registry: SessionRegistry = SessionRegistry(history_size=settings.status.history_size)
_server: Optional[TelemetryServer] = None
_startup_time: float = time.time()


def get_registry() -> SessionRegistry:
    return _registry


def get_server() -> Optional[TelemetryServer]:
    return _server


# =============================================================================
# Component Factories
# =============================================================================

def create_encoder_factory(config: Settings) -> EncoderFactory:
    """Build the ffmpeg encoder factory from config."""
    encoder = config.encoder
    return ffmpeg_factory(
        executable=encoder.executable,
        input_format=encoder.input_format,
        video_filter=encoder.video_filter,
        codec=encoder.codec,
        preset=encoder.preset,
        pixel_format=encoder.pixel_format,
        container=encoder.container,
        exit_timeout=encoder.exit_timeout_seconds,
        diagnostics_lines=encoder.diagnostics_lines,
    )


def create_server(
    config: Settings,
    registry: Optional[SessionRegistry] = None,
    encoder_factory: Optional[EncoderFactory] = None,
) -> TelemetryServer:
    """Wire a TelemetryServer from config."""
    variant = config.protocol.resolve_variant()
    logger.info(
        f"Protocol variant: {variant.name} "
        f"(command flag {variant.command_flag:#04x}, record {variant.command_size} bytes)"
    )

    decoder = FrameDecoder(
        variant=variant,
        max_frame_bytes=config.protocol.max_frame_bytes,
        read_timeout=config.protocol.read_timeout_seconds,
    )
    return TelemetryServer(
        host=config.server.host,
        port=config.server.port,
        output_root=Path(config.output.root),
        decoder=decoder,
        encoder_factory=encoder_factory or create_encoder_factory(config),
        layout=config.output.layout(),
        opcode_style=config.output.opcode_style,
        registry=registry,
    )


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the device listener with the API and stop it gracefully."""
    global _server, _startup_time

    _startup_time = time.time()
    logger.info(f"Starting telemetry recorder {__version__}")

    _server = create_server(settings, registry=_registry)
    await _server.start()

    yield

    logger.info("Shutting down gracefully...")
    await _server.stop()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Telemetry Recorder",
    description="Records device video frames and command streams",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "telemetry-recorder",
        "version": __version__,
        "status": "running",
        "listen": f"{settings.server.host}:{settings.server.port}",
        "protocol_variant": settings.protocol.variant,
        "output_root": settings.output.root,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - is the device listener accepting connections?

    Returns 200 when listening, 503 otherwise.
    """
    server = get_server()
    listening = server.serving if server else False

    if listening:
        return JSONResponse({
            "status": "ready",
            "listening": True,
            "port": server.bound_port,
        })

    return JSONResponse(
        {"status": "not_ready", "listening": False},
        status_code=503,
    )


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Aggregate session counters."""
    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        **get_registry().metrics(),
    })


@app.get("/sessions")
async def sessions(limit: int = 20) -> JSONResponse:
    """Active sessions and the most recent finished ones."""
    registry = get_registry()
    return JSONResponse({
        "active": [s.model_dump(mode="json") for s in registry.active()],
        "recent": [s.model_dump(mode="json") for s in registry.recent(limit)],
    })


@app.get("/sessions/{session_id}")
async def session_detail(session_id: str) -> JSONResponse:
    """One session's status."""
    result = get_registry().get(session_id)
    if result is None:
        return JSONResponse(
            {"error": f"Unknown session: {session_id}"},
            status_code=404,
        )
    return JSONResponse(result.model_dump(mode="json"))


# =============================================================================
# Standalone Listener
# =============================================================================

async def serve(config: Settings) -> None:
    """Run the device listener without the status API until SIGINT/SIGTERM."""
    server = create_server(config, registry=_registry)
    await server.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    await stop_event.wait()
    logger.info("Received shutdown signal")
    await server.stop()


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    """Console entry point."""
    if not settings.status.enabled:
        try:
            asyncio.run(serve(settings))
        except StorageError as e:
            logger.critical(f"Cannot start: {e}")
            raise SystemExit(1)
        return

    import uvicorn

    uvicorn.run(
        "telemetry_recorder.main:app",
        host=settings.status.host,
        port=settings.status.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
