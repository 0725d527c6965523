"""
Settings master configuration and global helpers.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from dotenv import find_dotenv, load_dotenv

from ..config_schema import CONFIG_SCHEMA
from ..errors import InvalidConfigError
from .agent import LoopConfig
from .base import ProviderName
from .knowledge import KnowledgeConfig
from .logging import LoggingConfig
from .provider import AnthropicConfig, OpenAIConfig, ProviderConfig


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    Master configuration for the runtime.

    This aggregates all configuration sections into a single object
    that can be loaded from environment variables, files, or constructed
    programmatically. ``provider`` names the adapter to build.
    """

    provider: ProviderName = "openai"
    system_prompt: str | None = None

    # Provider configurations
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    anthropic: AnthropicConfig = field(default_factory=AnthropicConfig)

    # Agent loop configuration
    loop: LoopConfig = field(default_factory=LoopConfig)

    # Knowledge search collaborator
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)

    # Logging configuration
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        if self.provider not in ("openai", "anthropic"):
            raise InvalidConfigError(f"Unknown provider: {self.provider}")

    @property
    def provider_config(self) -> ProviderConfig:
        """Configuration of the selected provider."""
        return getattr(self, self.provider)

    @classmethod
    def from_env(cls, prefix: str = "COPILOT_") -> Settings:
        """
        Load settings from environment variables.

        Environment variables are prefixed (default: COPILOT_) and use
        underscore-separated paths for nested settings.

        Example:
            COPILOT_PROVIDER=anthropic
            COPILOT_ANTHROPIC_MODEL=claude-sonnet-4-20250514
            COPILOT_LOOP_MAX_ITERATIONS=5
        """
        settings = cls()

        if provider := os.getenv(f"{prefix}PROVIDER"):
            settings.provider = provider.lower()  # type: ignore[assignment]
        if system_prompt := os.getenv(f"{prefix}SYSTEM_PROMPT"):
            settings.system_prompt = system_prompt

        # OpenAI settings
        if key := os.getenv(f"{prefix}OPENAI_API_KEY"):
            settings.openai.api_key = key
        if url := os.getenv(f"{prefix}OPENAI_BASE_URL"):
            settings.openai.base_url = url
        if model := os.getenv(f"{prefix}OPENAI_MODEL"):
            settings.openai.default_model = model

        # Anthropic settings
        if key := os.getenv(f"{prefix}ANTHROPIC_API_KEY"):
            settings.anthropic.api_key = key
        if url := os.getenv(f"{prefix}ANTHROPIC_BASE_URL"):
            settings.anthropic.base_url = url
        if model := os.getenv(f"{prefix}ANTHROPIC_MODEL"):
            settings.anthropic.default_model = model

        # Loop settings
        loop_overrides: dict[str, Any] = {}
        if max_iterations := os.getenv(f"{prefix}LOOP_MAX_ITERATIONS"):
            loop_overrides["max_iterations"] = int(max_iterations)
        if tool_timeout := os.getenv(f"{prefix}LOOP_TOOL_TIMEOUT"):
            loop_overrides["tool_timeout"] = float(tool_timeout)
        if parallel := os.getenv(f"{prefix}LOOP_PARALLEL_TOOLS"):
            loop_overrides["parallel_tool_execution"] = _env_bool(parallel)
        if approval := os.getenv(f"{prefix}LOOP_DEFAULT_APPROVAL"):
            loop_overrides["default_approval"] = approval.lower()
        if retries := os.getenv(f"{prefix}LOOP_PROVIDER_RETRIES"):
            loop_overrides["provider_retries"] = int(retries)
        if loop_overrides:
            settings.loop = dataclasses.replace(settings.loop, **loop_overrides)

        # Knowledge settings
        knowledge_overrides: dict[str, Any] = {}
        if endpoint := os.getenv(f"{prefix}KNOWLEDGE_ENDPOINT"):
            knowledge_overrides["endpoint"] = endpoint
            knowledge_overrides["enabled"] = True
        if key := os.getenv(f"{prefix}KNOWLEDGE_API_KEY"):
            knowledge_overrides["api_key"] = key
        if enabled := os.getenv(f"{prefix}KNOWLEDGE_ENABLED"):
            knowledge_overrides["enabled"] = _env_bool(enabled)
        if knowledge_overrides:
            settings.knowledge = dataclasses.replace(settings.knowledge, **knowledge_overrides)

        # Logging settings
        if level := os.getenv(f"{prefix}LOG_LEVEL"):
            settings.logging.level = level.upper()  # type: ignore[assignment]
        if log_format := os.getenv(f"{prefix}LOG_FORMAT"):
            settings.logging.format = log_format.lower()  # type: ignore[assignment]

        settings.__post_init__()
        return settings

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)

        Returns:
            Settings object with values from file
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            import tomllib

            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise InvalidConfigError(f"Unsupported config file format: {suffix}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """
        Create Settings from a dictionary.

        The input is validated against the configuration schema before
        any section is built; section dataclasses then run their own checks.
        """
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise InvalidConfigError(f"Configuration validation failed at {location}: {e.message}", cause=e) from e

        settings = cls()

        if "provider" in data:
            settings.provider = data["provider"]
        if "system_prompt" in data:
            settings.system_prompt = data["system_prompt"]

        settings.openai = _merge(settings.openai, data.get("openai"))
        settings.anthropic = _merge(settings.anthropic, data.get("anthropic"))
        settings.loop = _merge(settings.loop, data.get("loop"))
        settings.knowledge = _merge(settings.knowledge, data.get("knowledge"))
        settings.logging = _merge(settings.logging, data.get("logging"))

        return settings

    @classmethod
    def default(cls) -> Settings:
        return cls()

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return {k: convert(v) for k, v in dataclasses.asdict(obj).items()}
            elif isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        return convert(self)


def _merge(section: Any, overrides: dict[str, Any] | None) -> Any:
    """Rebuild a section dataclass with overrides so its validation reruns."""
    if not overrides:
        return section
    names = {f.name for f in dataclasses.fields(section)}
    known = {k: v for k, v in overrides.items() if k in names}
    return dataclasses.replace(section, **known)


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it from the environment if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Settings | None = None, **kwargs) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **kwargs: Override specific top-level settings

    Returns:
        The configured Settings object
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    elif _global_settings is None:
        _global_settings = Settings.from_env()

    for key, value in kwargs.items():
        if not hasattr(_global_settings, key):
            raise InvalidConfigError(f"Unknown setting: {key}")
        setattr(_global_settings, key, value)

    return _global_settings


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Optional path to a .env file. If not provided, uses find_dotenv().
        override: Whether to override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = ["Settings", "get_settings", "configure", "load_env"]
