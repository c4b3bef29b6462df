"""Anthropic adapter for pure request/response transformations."""

from __future__ import annotations

from typing import Any, Sequence

from anthropic.types import Message

from vaultlens.adapters.base import ToolRoutingMixin
from vaultlens.catalog import CATALOG, ToolSpec, anthropic_tools
from vaultlens.params import ChatMessage
from vaultlens.response import ChatResponse
from vaultlens.types import ToolCallRequest, ToolCallResult

TOOL_USE_STOP = "tool_use"


class AnthropicRequestAdapter(ToolRoutingMixin):
    """Adapter for converting between generic format and Anthropic format."""

    def render_tools(self, catalog: tuple[ToolSpec, ...] = CATALOG) -> list[dict[str, Any]]:
        return anthropic_tools(catalog)

    def to_provider(
        self, messages: Sequence[ChatMessage], params: dict[str, Any]
    ) -> dict[str, Any]:
        """Convert generic messages and params to Anthropic request format."""
        anthropic_messages: list[dict[str, Any]] = []
        system_prompt: str | list[dict[str, Any]] = ""

        for msg in messages:
            # Anthropic takes the system prompt as a top-level field
            if msg["role"] == "system":
                content = msg.get("content", "")
                system_prompt = content if isinstance(content, (str, list)) else str(content)
                continue

            anthropic_msg: dict[str, Any] = {"role": msg["role"]}
            content = msg.get("content")
            if content is not None:
                anthropic_msg["content"] = content if isinstance(content, (str, list)) else str(content)

            anthropic_messages.append(anthropic_msg)

        base_params = dict(params)
        base_params.pop("stream", None)
        base_params.pop("parallel_tool_calls", None)
        extras = base_params.pop("extra", {})

        # Anthropic requires max_tokens
        if base_params.get("max_tokens") is None:
            base_params["max_tokens"] = 4096

        if "stop" in base_params:
            stop = base_params.pop("stop")
            if stop:
                base_params["stop_sequences"] = stop if isinstance(stop, list) else [stop]

        for k, v in extras.items():
            base_params.setdefault(k, v)

        request = {"messages": anthropic_messages, **base_params}
        if system_prompt:
            request["system"] = system_prompt
        return request

    def from_provider(self, raw: Message) -> ChatResponse:
        """Convert Anthropic response to unified ChatResponse."""
        text_parts: list[str] = []
        tool_calls: list[ToolCallRequest] = []

        for block in raw.content or []:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCallRequest(
                        id=block.id,
                        name=block.name,
                        arguments=dict(block.input) if hasattr(block.input, "items") else {},
                    )
                )

        return ChatResponse(
            content="".join(text_parts),
            tool_calls=tool_calls or None,
            raw=raw,
            stop_reason=raw.stop_reason,
        )

    def stream_text(self, raw_chunk: Any) -> ChatResponse:
        """Extract the text delta from one Anthropic stream event."""
        content = ""
        event_type = getattr(raw_chunk, "type", None)
        if event_type == "content_block_delta":
            delta = getattr(raw_chunk, "delta", None)
            if getattr(delta, "type", None) == "text_delta":
                content = delta.text

        return ChatResponse(content=content, raw=raw_chunk, final=False)

    def from_stream(self, chunks: Sequence[Any], model: str) -> ChatResponse:
        """The stream ends with the SDK's accumulated final ``Message``."""
        for chunk in reversed(chunks):
            if isinstance(chunk, Message):
                return self.from_provider(chunk)
        return ChatResponse(content="", error=f"{model} stream ended without a final message")

    def wants_tools(self, response: ChatResponse) -> bool:
        return response.stop_reason == TOOL_USE_STOP and bool(response.tool_calls)

    def assistant_message_from(self, raw: Message) -> ChatMessage:
        """Convert an Anthropic response into an assistant turn, block for block."""
        blocks: list[dict[str, Any]] = []
        for block in raw.content or []:
            if block.type == "text":
                blocks.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": dict(block.input) if hasattr(block.input, "items") else {},
                    }
                )
            else:
                blocks.append(block.model_dump(mode="json", exclude_none=True))

        if any(b["type"] != "text" for b in blocks):
            return {"role": "assistant", "content": blocks}
        return {"role": "assistant", "content": "".join(b["text"] for b in blocks)}

    def tool_result_message(self, result: ToolCallResult) -> ChatMessage:
        """Convert ToolCallResult to Anthropic ChatMessage."""
        return self.tool_results_messages([result])[0]

    def tool_results_messages(self, results: Sequence[ToolCallResult]) -> list[ChatMessage]:
        """All results of one round go back in a single user turn."""
        return [
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.id,
                        "content": self._as_text(result.content),
                    }
                    for result in results
                ],
            }
        ]
