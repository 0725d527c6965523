"""
Knowledge base search configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from ..errors import InvalidConfigError


@dataclass
class KnowledgeConfig:
    """Configuration for the HTTP knowledge search collaborator."""

    enabled: bool = False
    endpoint: str | None = None
    api_key: str | None = field(default_factory=lambda: os.getenv("KNOWLEDGE_BASE_API_KEY"))
    timeout: float = 10.0
    limit: int = 5
    min_score: float = 0.0

    def __post_init__(self):
        if self.timeout <= 0:
            raise InvalidConfigError("timeout must be positive")
        if self.limit < 1:
            raise InvalidConfigError("limit must be at least 1")
        if self.endpoint and not self.endpoint.startswith(("http://", "https://")):
            raise InvalidConfigError("endpoint must be a valid HTTP(S) URL")
        if self.enabled and not self.endpoint:
            raise InvalidConfigError("endpoint is required when knowledge search is enabled")


__all__ = ["KnowledgeConfig"]
