"""
Runtime facade.

Bundles a provider, tools, approval policy, loop configuration and an
optional knowledge collaborator so application code can run the agent
loop with one call.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any

from .agent import AgentLoop, EventSink, RunResult
from .cancellation import CancellationToken
from .config import LoopConfig, Settings, get_settings
from .knowledge import HttpKnowledgeSearch, KnowledgeSearch, SearchOptions
from .logging import StructuredLogger, configure_logging, redact_api_key
from .providers import GenerationConfig, ProviderAdapter, create_provider
from .tools import ApprovalChannel, ApprovalPolicy, Tool, ToolRegistry
from .types import MessageInput, StreamEvent


class Runtime:
    """
    Configured agent runtime.

    Example:
        ```python
        runtime = Runtime.from_settings(Settings.from_env(), tools=[get_weather])

        result = await runtime.chat("What's the weather in Paris?")
        print(result.content)

        # Serve over SSE with any framework
        headers = sse_headers()
        async for frame in runtime.stream_sse(messages):
            ...
        ```
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        *,
        system_prompt: str | None = None,
        tools: ToolRegistry | Sequence[Tool] | None = None,
        approval_policy: ApprovalPolicy | None = None,
        config: LoopConfig | None = None,
        knowledge: KnowledgeSearch | None = None,
        knowledge_options: SearchOptions | None = None,
        generation: GenerationConfig | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.provider = provider
        self.tools = ToolRegistry.coerce(tools)
        self.approvals = ApprovalChannel()
        self.knowledge = knowledge
        self.loop = AgentLoop(
            provider,
            self.tools,
            approval_policy=approval_policy,
            approvals=self.approvals,
            config=config,
            knowledge=knowledge,
            knowledge_options=knowledge_options,
            system_prompt=system_prompt,
            generation=generation,
            logger=logger,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        tools: ToolRegistry | Sequence[Tool] | None = None,
        approval_policy: ApprovalPolicy | None = None,
        knowledge: KnowledgeSearch | None = None,
        **provider_kwargs: Any,
    ) -> Runtime:
        """
        Build a runtime from configuration.

        The provider is chosen by ``settings.provider``. An HTTP knowledge
        collaborator is created when ``settings.knowledge.enabled`` and none
        is passed in.

        Args:
            settings: Settings to use (default: the global settings)
            tools: Tools the agent may call
            approval_policy: Overrides the policy derived from ``settings.loop``
            knowledge: Knowledge collaborator overriding the configured one
            **provider_kwargs: Passed to the provider constructor (e.g. ``client``)
        """
        settings = settings or get_settings()
        log_cfg = settings.logging
        logger = configure_logging(
            level=log_cfg.level,
            json_output=log_cfg.format == "json",
            log_file=log_cfg.log_file,
        )

        provider_config = settings.provider_config
        provider = create_provider(provider_config, **provider_kwargs)

        knowledge_options = None
        if settings.knowledge.enabled:
            knowledge_options = SearchOptions(limit=settings.knowledge.limit, min_score=settings.knowledge.min_score)
            if knowledge is None:
                knowledge = HttpKnowledgeSearch(settings.knowledge)

        api_key = provider_config.api_key
        logger.info(
            "Runtime configured",
            provider=settings.provider,
            model=provider.model_name,
            api_key=redact_api_key(api_key) if log_cfg.redact_api_keys else api_key,
            knowledge=knowledge is not None,
        )

        return cls(
            provider,
            system_prompt=settings.system_prompt,
            tools=tools,
            approval_policy=approval_policy,
            config=settings.loop,
            knowledge=knowledge,
            knowledge_options=knowledge_options,
            logger=logger,
        )

    # === Tools and approvals ===

    def register_tool(self, tool: Tool) -> Runtime:
        self.tools.register(tool)
        return self

    def approve(self, execution_id: str) -> bool:
        return self.approvals.approve(execution_id)

    def reject(self, execution_id: str, reason: str | None = None) -> bool:
        return self.approvals.reject(execution_id, reason)

    # === Running ===

    async def chat(
        self,
        messages: MessageInput,
        *,
        cancellation_token: CancellationToken | None = None,
        sink: EventSink | None = None,
    ) -> RunResult:
        """Run the agent loop and return its result."""
        return await self.loop.run(messages, cancellation_token=cancellation_token, sink=sink)

    def stream(
        self,
        messages: MessageInput,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        return self.loop.stream(messages, cancellation_token=cancellation_token)

    def stream_sse(
        self,
        messages: MessageInput,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """SSE frames for one run, ending with exactly one ``done`` or ``error`` frame."""
        return self.loop.stream_sse(messages, cancellation_token=cancellation_token)

    # === Lifecycle ===

    async def close(self) -> None:
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        close = getattr(self.knowledge, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> Runtime:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def create_runtime(provider: ProviderAdapter | None = None, **kwargs: Any) -> Runtime:
    """Build a runtime from a provider, or from the global settings when none is given."""
    if provider is None:
        return Runtime.from_settings(**kwargs)
    return Runtime(provider, **kwargs)


__all__ = ["Runtime", "create_runtime"]
