"""
Configuration system for copilot-runtime.

This package provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading validated against a JSON schema
- Sensible defaults with override capability
"""

from .agent import DEFAULT_MAX_ITERATIONS, DEFAULT_TOOL_TIMEOUT, LoopConfig
from .base import ApprovalModeName, KnowledgeInjection, LogFormat, LogLevel, ProviderName
from .knowledge import KnowledgeConfig
from .logging import LoggingConfig
from .provider import AnthropicConfig, OpenAIConfig, ProviderConfig
from .settings import Settings, configure, get_settings, load_env

__all__ = [
    # Types
    "ProviderName",
    "ApprovalModeName",
    "KnowledgeInjection",
    "LogLevel",
    "LogFormat",
    # Provider configs
    "ProviderConfig",
    "OpenAIConfig",
    "AnthropicConfig",
    # Other configs
    "LoopConfig",
    "KnowledgeConfig",
    "LoggingConfig",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_TOOL_TIMEOUT",
    # Master config
    "Settings",
    # Global functions
    "get_settings",
    "configure",
    "load_env",
]
