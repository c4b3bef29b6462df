"""
Core types for vaultlens.

Provider-specific shapes live in the adapters; everything here is
provider-neutral and shared by the router, the transport and the engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal, Union

__all__ = [
    "ChatMessage",
    "Backend",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolInvocation",
    "ToolOutcome",
    "ActivityEvent",
    "DocumentationSuggestion",
    "ConversationContext",
    "QueryResult",
    "TextEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "DoneEvent",
    "StreamEvent",
]


# Type alias for chat messages (one conversation turn in provider shape)
ChatMessage = dict[str, Any]


class Backend(StrEnum):
    """Where a tool invocation is routed."""

    AUDIT = "audit"
    VAULT = "vault"
    SYSTEM = "system"


@dataclass(slots=True)
class ToolCallRequest:
    """A model-agnostic request emitted by the LLM to call a tool."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(slots=True)
class ToolCallResult:
    """Payload to send back to the LLM after the tool finished running."""

    id: str  # must match the request id
    content: str | dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """One routed tool call.

    ``backend`` is ``None`` when the catalog name had no route; the router
    reports such invocations as failed outcomes.
    """

    backend: Backend | None
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend": str(self.backend) if self.backend else None,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass(frozen=True, slots=True)
class ToolOutcome:
    """Result of one invocation; ``payload`` is meaningful only on success."""

    backend: Backend | None
    name: str
    success: bool
    payload: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, invocation: ToolInvocation, payload: Any) -> "ToolOutcome":
        return cls(invocation.backend, invocation.name, True, payload=payload)

    @classmethod
    def failed(cls, invocation: ToolInvocation, error: str) -> "ToolOutcome":
        return cls(invocation.backend, invocation.name, False, error=error or "Unknown error")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "backend": str(self.backend) if self.backend else None,
            "name": self.name,
            "success": self.success,
        }
        if self.success:
            data["result"] = self.payload
        else:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """Observability record emitted by the router after every invocation."""

    backend: Backend | None
    name: str
    status: Literal["success", "error"]
    duration_ms: float
    description: str
    error: str | None = None
    type: Literal["tool_call"] = "tool_call"


@dataclass(frozen=True, slots=True)
class DocumentationSuggestion:
    title: str
    url: str
    description: str
    context: str | None = None


@dataclass(slots=True)
class ConversationContext:
    """Prior turns used to seed an empty session."""

    messages: list[ChatMessage] = field(default_factory=list)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Terminal output of one ``execute_query`` call."""

    query: str
    response: str
    tool_calls: tuple[ToolInvocation, ...] = ()
    tool_results: tuple[ToolOutcome, ...] = ()
    reasoning: str = ""
    timestamp: str = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "response": self.response,
            "toolCalls": [call.to_dict() for call in self.tool_calls],
            "toolResults": [result.to_dict() for result in self.tool_results],
            "reasoning": self.reasoning,
            "timestamp": self.timestamp,
        }


# Streaming events. The ``type`` tags are the contract relied on by callers.


@dataclass(frozen=True, slots=True)
class TextEvent:
    content: str
    type: Literal["text"] = "text"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    invocation: ToolInvocation
    type: Literal["tool_call"] = "tool_call"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "toolCall": self.invocation.to_dict()}


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    outcome: ToolOutcome
    type: Literal["tool_result"] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "toolResult": self.outcome.to_dict()}


@dataclass(frozen=True, slots=True)
class DoneEvent:
    result: QueryResult
    type: Literal["done"] = "done"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "result": self.result.to_dict()}


StreamEvent = Union[TextEvent, ToolCallEvent, ToolResultEvent, DoneEvent]
