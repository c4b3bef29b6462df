"""Streaming helpers: rebuild a complete OpenAI turn from its chunks."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from openai.types.chat import ChatCompletion, ChatCompletionChunk

__all__ = ["aggregate_openai_chunks"]


def aggregate_openai_chunks(
    chunks: Iterable[ChatCompletionChunk],
    model: str,
) -> ChatCompletion:
    """
    Aggregate a stream of ChatCompletionChunks into a single ChatCompletion.

    Tool call fragments are merged by their ``index``; a tool call is kept
    only once both its id and function name have arrived.
    """
    full_content = ""
    tool_calls_agg: List[Dict[str, Any]] = []
    finish_reason: Optional[str] = None
    system_fingerprint: Optional[str] = None
    first_chunk_id: Optional[str] = None
    created_timestamp: Optional[int] = None

    for chunk in chunks:
        if not first_chunk_id and chunk.id:
            first_chunk_id = chunk.id
        if not created_timestamp and chunk.created:
            created_timestamp = chunk.created
        if chunk.system_fingerprint:
            system_fingerprint = chunk.system_fingerprint

        if not chunk.choices:
            continue

        choice = chunk.choices[0]
        delta = choice.delta
        if delta is not None:
            if delta.content:
                full_content += delta.content

            for tc_chunk in delta.tool_calls or []:
                while len(tool_calls_agg) <= tc_chunk.index:
                    tool_calls_agg.append(
                        {"id": "", "type": "function", "function": {"name": "", "arguments": ""}}
                    )

                agg_tc = tool_calls_agg[tc_chunk.index]
                if tc_chunk.id:
                    agg_tc["id"] = tc_chunk.id
                if tc_chunk.function:
                    if tc_chunk.function.name:
                        agg_tc["function"]["name"] += tc_chunk.function.name
                    if tc_chunk.function.arguments:
                        agg_tc["function"]["arguments"] += tc_chunk.function.arguments

        if choice.finish_reason:
            finish_reason = choice.finish_reason

    final_tool_calls = [
        tc for tc in tool_calls_agg if tc["id"] and tc["function"]["name"]
    ]

    message: Dict[str, Any] = {
        "role": "assistant",
        "content": full_content if (full_content or not final_tool_calls) else None,
    }
    if final_tool_calls:
        message["tool_calls"] = final_tool_calls

    return ChatCompletion.model_validate(
        {
            "id": first_chunk_id or "aggregated_stream",
            "object": "chat.completion",
            "created": created_timestamp or 0,
            "model": model,
            "system_fingerprint": system_fingerprint,
            "choices": [
                {
                    "index": 0,
                    "finish_reason": finish_reason
                    or ("tool_calls" if final_tool_calls else "stop"),
                    "message": message,
                }
            ],
        }
    )
