"""
Provider configuration classes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from ..errors import InvalidConfigError
from .base import ProviderName


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    # Registry key used to pick the adapter
    provider: ProviderName = "openai"

    # API settings
    api_key: str | None = None
    base_url: str | None = None
    organization: str | None = None

    # Request settings
    timeout: float = 60.0
    max_retries: int = 3
    retry_backoff: float = 1.0

    # Model defaults
    default_model: str | None = None
    default_temperature: float | None = None
    default_max_tokens: int | None = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.timeout <= 0:
            raise InvalidConfigError("timeout must be positive")
        if self.max_retries < 0:
            raise InvalidConfigError("max_retries cannot be negative")
        if self.retry_backoff < 0:
            raise InvalidConfigError("retry_backoff cannot be negative")
        if self.default_temperature is not None and not 0.0 <= self.default_temperature <= 2.0:
            raise InvalidConfigError("default_temperature must be between 0 and 2")
        if self.default_max_tokens is not None and self.default_max_tokens < 1:
            raise InvalidConfigError("default_max_tokens must be at least 1")


@dataclass
class OpenAIConfig(ProviderConfig):
    """OpenAI-specific configuration."""

    provider: ProviderName = "openai"
    api_key: str | None = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    default_model: str = "gpt-4o"


@dataclass
class AnthropicConfig(ProviderConfig):
    """Anthropic-specific configuration."""

    provider: ProviderName = "anthropic"
    api_key: str | None = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    default_model: str = "claude-sonnet-4-20250514"

    # The messages API requires max_tokens on every request
    default_max_tokens: int | None = 4096


__all__ = ["ProviderConfig", "OpenAIConfig", "AnthropicConfig"]
