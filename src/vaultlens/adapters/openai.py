"""OpenAI adapter for pure request/response transformations."""

from __future__ import annotations

import json
from typing import Any, Sequence

from openai.types.chat import ChatCompletion, ChatCompletionChunk

from vaultlens.adapters.base import ToolRoutingMixin
from vaultlens.catalog import CATALOG, ToolSpec, openai_tools
from vaultlens.params import ChatMessage
from vaultlens.response import ChatResponse
from vaultlens.stream_utils import aggregate_openai_chunks
from vaultlens.types import ToolCallRequest, ToolCallResult

TOOL_CALLS_FINISH = "tool_calls"


class OpenAIRequestAdapter(ToolRoutingMixin):
    """Adapter for converting between generic format and OpenAI format."""

    def render_tools(self, catalog: tuple[ToolSpec, ...] = CATALOG) -> list[dict[str, Any]]:
        return openai_tools(catalog)

    def to_provider(
        self, messages: Sequence[ChatMessage], params: dict[str, Any]
    ) -> dict[str, Any]:
        """Convert generic messages and params to OpenAI request format."""
        openai_messages: list[dict[str, Any]] = []
        for msg in messages:
            openai_msg: dict[str, Any] = {"role": msg["role"]}

            if msg.get("content") is not None:
                openai_msg["content"] = msg["content"]

            if msg.get("tool_calls"):
                openai_msg["tool_calls"] = msg["tool_calls"]
                # OpenAI expects null content alongside tool_calls
                openai_msg.setdefault("content", None)

            if msg.get("tool_call_id"):
                openai_msg["tool_call_id"] = msg["tool_call_id"]

            if msg.get("name"):
                openai_msg["name"] = msg["name"]

            if "content" not in openai_msg:
                openai_msg["content"] = ""

            openai_messages.append(openai_msg)

        base_params = dict(params)
        base_params.pop("stream", None)
        extras = base_params.pop("extra", {})

        # Current chat models take max_completion_tokens
        max_tokens = base_params.pop("max_tokens", None)
        if max_tokens is not None:
            base_params["max_completion_tokens"] = max_tokens

        for k, v in extras.items():
            base_params.setdefault(k, v)

        return {"messages": openai_messages, **base_params}

    def from_provider(self, raw: ChatCompletion) -> ChatResponse:
        """Convert OpenAI response to unified ChatResponse."""
        if not raw.choices or not raw.choices[0].message:
            return ChatResponse(content="", raw=raw)

        choice = raw.choices[0]
        message = choice.message
        tool_calls: list[ToolCallRequest] = []

        for tc in message.tool_calls or []:
            function = getattr(tc, "function", None)
            if function is None:
                continue
            tool_calls.append(
                ToolCallRequest(
                    id=tc.id,
                    name=function.name,
                    arguments=self._parse_arguments(function.name, function.arguments),
                )
            )

        return ChatResponse(
            content=message.content or "",
            tool_calls=tool_calls or None,
            raw=raw,
            stop_reason=choice.finish_reason,
        )

    def _parse_arguments(self, name: str, raw_args: Any) -> dict[str, Any]:
        """Malformed argument JSON becomes ``{}`` so the call still gets a result."""
        if isinstance(raw_args, dict):
            return raw_args
        if not isinstance(raw_args, str) or not raw_args.strip():
            return {}
        try:
            parsed = json.loads(raw_args)
        except json.JSONDecodeError as exc:
            self.logger.warning("Bad JSON in tool call %s: %s", name, raw_args, exc_info=exc)
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def stream_text(self, raw_chunk: ChatCompletionChunk) -> ChatResponse:
        """Extract content from streaming chunk."""
        content = ""
        if raw_chunk.choices and raw_chunk.choices[0].delta:
            content = raw_chunk.choices[0].delta.content or ""

        return ChatResponse(content=content, raw=raw_chunk, final=False)

    def from_stream(self, chunks: Sequence[ChatCompletionChunk], model: str) -> ChatResponse:
        return self.from_provider(aggregate_openai_chunks(chunks, model))

    def wants_tools(self, response: ChatResponse) -> bool:
        return response.stop_reason == TOOL_CALLS_FINISH and bool(response.tool_calls)

    def assistant_message_from(self, raw: ChatCompletion) -> ChatMessage:
        """Convert OpenAI response to assistant ChatMessage."""
        if not raw.choices or not raw.choices[0].message:
            return {"role": "assistant", "content": ""}

        message = raw.choices[0].message
        chat_message: ChatMessage = {"role": "assistant", "content": message.content}

        function_calls = [tc for tc in message.tool_calls or [] if getattr(tc, "function", None)]
        if function_calls:
            chat_message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
                for tc in function_calls
            ]
        elif chat_message["content"] is None:
            chat_message["content"] = ""

        return chat_message

    def tool_result_message(self, result: ToolCallResult) -> ChatMessage:
        """Convert ToolCallResult to OpenAI ChatMessage."""
        return {
            "role": "tool",
            "tool_call_id": result.id,
            "content": self._as_text(result.content),
        }

    def tool_results_messages(self, results: Sequence[ToolCallResult]) -> list[ChatMessage]:
        """OpenAI expects one ``tool`` message per call, in request order."""
        return [self.tool_result_message(result) for result in results]
