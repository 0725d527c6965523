"""
Provider adapters.

Adapters are looked up by name in a small registry so the runtime can
pick one from configuration.
"""

from __future__ import annotations

from ..config.provider import AnthropicConfig, OpenAIConfig, ProviderConfig
from ..errors import UnknownProviderError
from .anthropic import AnthropicProvider, AnthropicStreamTranslator
from .base import (
    BaseProvider,
    ChatRequest,
    GenerationConfig,
    MalformedChunkError,
    ProviderAdapter,
    StreamTranslator,
    parameter_to_json_schema,
    tool_parameters_schema,
)
from .openai import OpenAIProvider, OpenAIStreamTranslator

PROVIDERS: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}

_DEFAULT_CONFIGS: dict[str, type[ProviderConfig]] = {
    "openai": OpenAIConfig,
    "anthropic": AnthropicConfig,
}


def register_provider(name: str, provider_cls: type[BaseProvider]) -> None:
    """Make an adapter class available to ``create_provider`` under ``name``."""
    PROVIDERS[name] = provider_cls


def create_provider(config: ProviderConfig | str, **kwargs) -> BaseProvider:
    """
    Build a provider adapter from configuration.

    Args:
        config: A ProviderConfig (its ``provider`` field picks the adapter)
            or a provider name, in which case that provider's default
            configuration is used.
        **kwargs: Passed through to the adapter constructor (e.g. ``client``).

    Raises:
        UnknownProviderError: If no adapter is registered under the name.
    """
    name = config if isinstance(config, str) else config.provider
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise UnknownProviderError(name, available=sorted(PROVIDERS))

    if isinstance(config, str):
        config_cls = _DEFAULT_CONFIGS.get(name)
        config = config_cls() if config_cls is not None else ProviderConfig(provider=name)
    return provider_cls(config, **kwargs)


__all__ = [
    "ProviderAdapter",
    "BaseProvider",
    "ChatRequest",
    "GenerationConfig",
    "StreamTranslator",
    "MalformedChunkError",
    "parameter_to_json_schema",
    "tool_parameters_schema",
    "OpenAIProvider",
    "OpenAIStreamTranslator",
    "AnthropicProvider",
    "AnthropicStreamTranslator",
    "PROVIDERS",
    "register_provider",
    "create_provider",
]
