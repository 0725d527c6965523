"""
Top-level package for the copilot runtime.

Runs a tool-calling agent loop over OpenAI or Anthropic models and streams
its progress as Server-Sent Events. Environment variables are loaded from
the nearest `.env` on import so API keys are picked up without extra setup.
"""
from dotenv import find_dotenv, load_dotenv

# Keep side effect so API keys are loaded on import.
_ = load_dotenv(find_dotenv(usecwd=True))

from .agent import (
    AgentLoop,
    ApprovalStatus,
    RunResult,
    StopReason,
    ToolExecution,
    ToolExecutionCoordinator,
    ToolExecutionStatus,
    run_agent_loop,
)
from .cancellation import CancellationToken
from .config import (
    AnthropicConfig,
    KnowledgeConfig,
    LoggingConfig,
    LoopConfig,
    OpenAIConfig,
    ProviderConfig,
    Settings,
    configure,
    get_settings,
    load_env,
)
from .errors import (
    ApprovalRejectedError,
    CancellationError,
    ConfigError,
    CopilotRuntimeError,
    ErrorCode,
    ProviderError,
    ToolArgumentError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from .knowledge import (
    KNOWLEDGE_BASE_SYSTEM_INSTRUCTION,
    HttpKnowledgeSearch,
    KnowledgeResult,
    KnowledgeSearch,
    SearchOptions,
    augment_with_knowledge,
    format_knowledge_results,
)
from .logging import configure_logging, get_logger
from .providers import (
    AnthropicProvider,
    BaseProvider,
    ChatRequest,
    GenerationConfig,
    OpenAIProvider,
    ProviderAdapter,
    create_provider,
    register_provider,
)
from .runtime import Runtime, create_runtime
from .streaming import (
    BufferingAdapter,
    EventChannel,
    SSEEncoder,
    collect_stream,
    format_sse_event,
    parse_sse_frames,
    sse_headers,
)
from .tools import (
    ApprovalChannel,
    ApprovalMode,
    ApprovalPolicy,
    Tool,
    ToolRegistry,
    ToolResult,
    tool,
    tool_from_function,
)
from .types import (
    Attachment,
    CompletionResult,
    Message,
    Role,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolCallDelta,
    Usage,
)

__version__ = "0.1.0"

__all__ = [
    # Agent loop
    "AgentLoop",
    "run_agent_loop",
    "RunResult",
    "StopReason",
    "ToolExecution",
    "ToolExecutionStatus",
    "ApprovalStatus",
    "ToolExecutionCoordinator",
    "Runtime",
    "create_runtime",
    "CancellationToken",
    # Types
    "Attachment",
    "CompletionResult",
    "Message",
    "Role",
    "StreamEvent",
    "StreamEventType",
    "ToolCall",
    "ToolCallDelta",
    "Usage",
    # Providers
    "ProviderAdapter",
    "BaseProvider",
    "ChatRequest",
    "GenerationConfig",
    "OpenAIProvider",
    "AnthropicProvider",
    "create_provider",
    "register_provider",
    # Tools
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "tool",
    "tool_from_function",
    "ApprovalMode",
    "ApprovalPolicy",
    "ApprovalChannel",
    # Streaming
    "SSEEncoder",
    "EventChannel",
    "BufferingAdapter",
    "collect_stream",
    "format_sse_event",
    "parse_sse_frames",
    "sse_headers",
    # Knowledge
    "KnowledgeSearch",
    "KnowledgeResult",
    "SearchOptions",
    "HttpKnowledgeSearch",
    "augment_with_knowledge",
    "format_knowledge_results",
    "KNOWLEDGE_BASE_SYSTEM_INSTRUCTION",
    # Config
    "Settings",
    "LoopConfig",
    "ProviderConfig",
    "OpenAIConfig",
    "AnthropicConfig",
    "KnowledgeConfig",
    "LoggingConfig",
    "get_settings",
    "configure",
    "load_env",
    # Errors
    "CopilotRuntimeError",
    "ErrorCode",
    "ProviderError",
    "ToolError",
    "ToolArgumentError",
    "ToolNotFoundError",
    "ToolExecutionError",
    "ToolTimeoutError",
    "ApprovalRejectedError",
    "CancellationError",
    "ConfigError",
    # Logging
    "get_logger",
    "configure_logging",
]
