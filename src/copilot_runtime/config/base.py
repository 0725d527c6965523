"""
Base types for configuration.
"""

from __future__ import annotations

from typing import Literal

ProviderName = Literal["openai", "anthropic"]
ApprovalModeName = Literal["auto", "manual"]
KnowledgeInjection = Literal["system_prompt", "leading_message"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]


__all__ = ["ProviderName", "ApprovalModeName", "KnowledgeInjection", "LogLevel", "LogFormat"]
