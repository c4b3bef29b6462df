"""LLM client behaviour: error wrapping, streaming and construction."""

import pytest
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from scripted import (
    ScriptedLLM,
    anthropic_message,
    anthropic_stream,
    openai_stream,
    text_block,
)
from vaultlens.adapters import AnthropicRequestAdapter, OpenAIRequestAdapter
from vaultlens.client import AnthropicLLM, OpenAILLM, create_llm
from vaultlens.errors import LLMBridgeError, VaultLensError
from vaultlens.provider import Provider
from vaultlens.response import ChatResponse


@pytest.mark.asyncio
async def test_chat_wraps_provider_errors():
    llm = ScriptedLLM(AnthropicRequestAdapter(), [TimeoutError("read timed out")])

    response = await llm.chat([{"role": "user", "content": "hi"}])

    assert response.is_error
    assert response.error.startswith("Connection problem")
    with pytest.raises(LLMBridgeError) as excinfo:
        response.raise_for_error()
    assert isinstance(excinfo.value.original_exc, TimeoutError)


@pytest.mark.asyncio
async def test_chat_forces_non_streaming():
    llm = ScriptedLLM(AnthropicRequestAdapter(), [anthropic_message(text_block("ok"))])

    await llm.chat([{"role": "user", "content": "hi"}], params={"stream": True})

    assert llm.requests[0][1]["stream"] is False


@pytest.mark.asyncio
async def test_stream_yields_deltas_then_one_final():
    llm = ScriptedLLM(
        AnthropicRequestAdapter(),
        [anthropic_stream(anthropic_message(text_block("Hello world")), ["Hello ", "world"])],
    )

    parts = [part async for part in llm.stream([{"role": "user", "content": "hi"}])]

    assert [(p.content, p.final) for p in parts] == [
        ("Hello ", False),
        ("world", False),
        ("Hello world", True),
    ]


@pytest.mark.asyncio
async def test_openai_stream_final_carries_tool_calls():
    llm = ScriptedLLM(
        OpenAIRequestAdapter(),
        [openai_stream(tool_calls=[("call_1", "lookup_self", {})])],
        model="gpt-4o",
    )

    parts = [part async for part in llm.stream([{"role": "user", "content": "hi"}])]

    (final,) = parts
    assert final.final
    assert final.tool_calls[0].name == "lookup_self"


@pytest.mark.asyncio
async def test_stream_error_is_final_error_response():
    llm = ScriptedLLM(AnthropicRequestAdapter(), [ValueError("bad request")])

    parts = [part async for part in llm.stream([{"role": "user", "content": "hi"}])]

    (final,) = parts
    assert final.final and final.is_error
    assert final.error.startswith("ValueError")


def test_raise_for_error_without_exception():
    with pytest.raises(VaultLensError, match="nope"):
        ChatResponse(content="", error="nope").raise_for_error()

    ChatResponse(content="fine").raise_for_error()


def test_create_llm_from_client():
    llm = create_llm(Provider.ANTHROPIC, "claude-3-5-sonnet-20241022", client=AsyncAnthropic(api_key="k"))

    assert isinstance(llm, AnthropicLLM)
    assert llm.api_key == "k"
    assert isinstance(llm.adapter, AnthropicRequestAdapter)


def test_create_llm_reads_key_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    llm = create_llm(Provider.OPENAI, "gpt-4o")

    assert isinstance(llm, OpenAILLM)
    assert llm.api_key == "sk-test"


def test_from_client_type_check():
    with pytest.raises(TypeError):
        OpenAILLM.from_client("gpt-4o", AsyncAnthropic(api_key="k"))


def test_unsupported_provider():
    with pytest.raises(ValueError, match="Unsupported provider"):
        create_llm("gemini", "gemini-pro", api_key="k")
