"""
Telemetry Recorder Configuration
================================

This module handles configuration loading for the telemetry recorder.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    RECORDER_HOST              -> server.host
    RECORDER_PORT              -> server.port
    RECORDER_OUTPUT_ROOT       -> output.root
    RECORDER_PROTOCOL_VARIANT  -> protocol.variant
    RECORDER_READ_TIMEOUT      -> protocol.read_timeout_seconds
    RECORDER_FFMPEG            -> encoder.executable
    RECORDER_STATUS_PORT       -> status.port
    RECORDER_LOG_LEVEL         -> logging.level

Example:
    from telemetry_recorder.config import settings

    print(settings.server.port)
    print(settings.protocol.variant)
    print(settings.encoder.executable)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from telemetry_recorder.protocol.framing import ProtocolVariant, get_variant
from telemetry_recorder.storage import OutputLayout


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServerConfig(BaseModel):
    """Device listener configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=0, le=65535, description="Bind port")


class OutputConfig(BaseModel):
    """Output directory configuration."""

    root: str = Field(
        default="./recordings",
        description="Parent directory of all session directories",
    )
    video_filename: str = Field(default="video.avi", description="Encoder output file")
    sync_filename: str = Field(default="sync.txt", description="Sync index file")
    command_filename: str = Field(default="commands.txt", description="Command log file")
    opcode_style: Literal["char", "int"] = Field(
        default="char",
        description="Write opcodes as ASCII characters or as numbers",
    )

    def layout(self) -> OutputLayout:
        return OutputLayout(
            video_filename=self.video_filename,
            sync_filename=self.sync_filename,
            command_filename=self.command_filename,
        )


class ProtocolConfig(BaseModel):
    """Wire protocol configuration."""

    variant: str = Field(
        default="opcode_speeds",
        description="Protocol variant: 'opcode_speeds' or 'opcode_only'",
    )
    command_flag: Optional[int] = Field(
        default=None,
        ge=1,
        le=0x7F,
        description="Override of the flag bit marking command messages",
    )
    max_frame_bytes: int = Field(
        default=16 * 1024 * 1024,
        ge=0,
        description="Largest accepted video frame (0 = unlimited)",
    )
    read_timeout_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Read deadline per message read (0 = wait forever)",
    )

    @field_validator("variant")
    @classmethod
    def _known_variant(cls, value: str) -> str:
        get_variant(value)
        return value

    def resolve_variant(self) -> ProtocolVariant:
        return get_variant(self.variant, self.command_flag)


class EncoderConfig(BaseModel):
    """External video encoder (ffmpeg) configuration."""

    executable: str = Field(default="ffmpeg", description="ffmpeg binary")
    input_format: str = Field(default="mjpeg", description="Input demuxer")
    video_filter: Optional[str] = Field(
        default="vflip,hflip,crop=in_w:in_h/2",
        description="ffmpeg -vf filter chain (null to disable)",
    )
    codec: str = Field(default="libx264", description="Video codec")
    preset: str = Field(default="veryfast", description="Codec preset")
    pixel_format: str = Field(default="yuv420p", description="Output pixel format")
    container: str = Field(default="avi", description="Output container format")
    exit_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time to wait for the encoder to exit before killing it",
    )
    diagnostics_lines: int = Field(
        default=200,
        ge=1,
        description="Encoder stderr lines retained for error reports",
    )


class StatusConfig(BaseModel):
    """HTTP status API configuration."""

    enabled: bool = Field(default=True, description="Serve the status API")
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8081, ge=1, le=65535, description="Bind port")
    history_size: int = Field(
        default=100,
        ge=1,
        description="Finished sessions kept for /sessions",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the telemetry recorder.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, checks RECORDER_CONFIG
                     and then common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("RECORDER_CONFIG")

    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/etc/telemetry-recorder/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    # Build settings object
    settings = Settings.model_validate(config_data)

    return settings


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Listener settings
    if env_host := os.environ.get("RECORDER_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_port := os.environ.get("RECORDER_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Output settings
    if env_root := os.environ.get("RECORDER_OUTPUT_ROOT"):
        config_data.setdefault("output", {})["root"] = env_root

    # Protocol settings
    if env_variant := os.environ.get("RECORDER_PROTOCOL_VARIANT"):
        config_data.setdefault("protocol", {})["variant"] = env_variant
    if env_timeout := os.environ.get("RECORDER_READ_TIMEOUT"):
        config_data.setdefault("protocol", {})["read_timeout_seconds"] = float(env_timeout)

    # Encoder settings
    if env_ffmpeg := os.environ.get("RECORDER_FFMPEG"):
        config_data.setdefault("encoder", {})["executable"] = env_ffmpeg

    # Status API settings
    if env_status_port := os.environ.get("RECORDER_STATUS_PORT"):
        config_data.setdefault("status", {})["port"] = int(env_status_port)

    # Logging settings
    if env_log := os.environ.get("RECORDER_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
