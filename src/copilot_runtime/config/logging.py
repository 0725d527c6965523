"""
Logging configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import InvalidConfigError
from .base import LogFormat, LogLevel


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: LogLevel = "INFO"
    format: LogFormat = "text"

    # Output settings
    log_file: Path | None = None

    # Redaction
    redact_api_keys: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if self.level not in valid_levels:
            raise InvalidConfigError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")
        valid_formats = ("text", "json")
        if self.format not in valid_formats:
            raise InvalidConfigError(f"Invalid log format: {self.format}. Must be one of {valid_formats}")
        if self.log_file and isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)


__all__ = ["LoggingConfig"]
