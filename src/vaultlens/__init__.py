"""
VaultLens - agentic tool orchestration for HashiCorp Vault questions.
"""

from .client import (
    BaseAsyncLLM,
    OpenAILLM,
    AnthropicLLM,
    create_llm,
)
from .config import ServerConfig, Settings
from .engine import ConversationEngine
from .errors import (
    LLMBridgeError,
    RequestTimeoutError,
    ToolLoopLimitError,
    TransportError,
    VaultLensError,
)
from .factory import create_engine
from .provider import Provider, get_api_key
from .response import ChatResponse
from .router import ToolRouter
from .transport import StdioTransport
from .types import (
    ActivityEvent,
    Backend,
    ChatMessage,
    ConversationContext,
    DocumentationSuggestion,
    QueryResult,
    StreamEvent,
    ToolCallRequest,
    ToolCallResult,
    ToolInvocation,
    ToolOutcome,
)

__version__ = "0.1.0"

__all__ = [
    "BaseAsyncLLM",
    "OpenAILLM",
    "AnthropicLLM",
    "create_llm",
    "create_engine",
    "ConversationEngine",
    "ToolRouter",
    "StdioTransport",
    "ServerConfig",
    "Settings",
    "Provider",
    "get_api_key",
    "ChatResponse",
    "ChatMessage",
    "ActivityEvent",
    "Backend",
    "ConversationContext",
    "DocumentationSuggestion",
    "QueryResult",
    "StreamEvent",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolInvocation",
    "ToolOutcome",
    "VaultLensError",
    "LLMBridgeError",
    "TransportError",
    "RequestTimeoutError",
    "ToolLoopLimitError",
]
