"""Headless chat-session controller for streaming LLM backends."""

from chatloom.cancellation import CancellationToken
from chatloom.config import (
    IDLE_PUBLISH_INTERVAL,
    STREAMING_PUBLISH_INTERVAL,
    ProviderConfig,
    SessionConfig,
)
from chatloom.context import ToolContext
from chatloom.exceptions import (
    ChatloomError,
    HistoryFormatError,
    InvalidInputError,
    ProviderConfigError,
    SessionBusyError,
    ToolNotFoundError,
    ToolValidationError,
)
from chatloom.instrumentation import instrument, uninstrument
from chatloom.memory import InMemoryStore, MemoryAdapter
from chatloom.message import (
    ContentPart,
    FilePart,
    Message,
    MessageRole,
    TextPart,
    ToolCall,
    ToolResultPart,
    ToolUsePart,
)
from chatloom.provider import (
    ChatRequest,
    ModelInfo,
    ModelProvider,
    OpenAICompatibleProvider,
    create_anthropic_provider,
    create_grok_provider,
    create_local_provider,
    create_mistral_provider,
    create_openai_provider,
)
from chatloom.publisher import StatePublisher
from chatloom.registry import ProviderRegistry, default_registry
from chatloom.session import ChatSession
from chatloom.state import SessionState, SessionStatus
from chatloom.streaming import (
    DoneFragment,
    Fragment,
    TextFragment,
    ToolCallAccumulator,
    ToolUseFragment,
)
from chatloom.tools import Tool, ToolRegistry, tool

__all__ = [
    "CancellationToken",
    "ChatRequest",
    "ChatSession",
    "ChatloomError",
    "ContentPart",
    "DoneFragment",
    "FilePart",
    "Fragment",
    "HistoryFormatError",
    "IDLE_PUBLISH_INTERVAL",
    "InMemoryStore",
    "InvalidInputError",
    "MemoryAdapter",
    "Message",
    "MessageRole",
    "ModelInfo",
    "ModelProvider",
    "OpenAICompatibleProvider",
    "ProviderConfig",
    "ProviderConfigError",
    "ProviderRegistry",
    "STREAMING_PUBLISH_INTERVAL",
    "SessionBusyError",
    "SessionConfig",
    "SessionState",
    "SessionStatus",
    "StatePublisher",
    "TextFragment",
    "TextPart",
    "Tool",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolContext",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResultPart",
    "ToolUseFragment",
    "ToolUsePart",
    "ToolValidationError",
    "create_anthropic_provider",
    "create_grok_provider",
    "create_local_provider",
    "create_mistral_provider",
    "create_openai_provider",
    "default_registry",
    "instrument",
    "tool",
    "uninstrument",
]
