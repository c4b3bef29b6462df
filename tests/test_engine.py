"""Tests for the conversation engine, streaming and non-streaming."""

import json
from datetime import datetime, timezone

import pytest

from scripted import (
    FakeTransport,
    ScriptedLLM,
    anthropic_message,
    anthropic_stream,
    openai_completion,
    openai_stream,
    text_block,
    tool_use,
)
from vaultlens.adapters import AnthropicRequestAdapter, OpenAIRequestAdapter
from vaultlens.engine import ConversationEngine
from vaultlens.errors import LLMBridgeError, ToolLoopLimitError
from vaultlens.router import ToolRouter
from vaultlens.transport import ServerToolResult
from vaultlens.types import (
    Backend,
    ConversationContext,
    DoneEvent,
    TextEvent,
    ToolCallEvent,
    ToolInvocation,
    ToolResultEvent,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


@pytest.fixture
def audit():
    return FakeTransport({"audit.search_events": ServerToolResult(success=True, result='{"total": 5}')})


@pytest.fixture
def vault():
    return FakeTransport()


@pytest.fixture
def router(audit, vault):
    return ToolRouter({Backend.AUDIT: audit, Backend.VAULT: vault})


def make_engine(llm, router, **kwargs):
    kwargs.setdefault("clock", fixed_clock)
    return ConversationEngine(llm, router, **kwargs)


def anthropic_search_script():
    return [
        anthropic_message(
            text_block("Let me search the audit log."),
            tool_use("toolu_1", "search_audit_events", {"limit": 5}),
        ),
        anthropic_message(text_block("Found 5 events.")),
    ]


class TestAnthropicLoop:
    @pytest.mark.asyncio
    async def test_search_then_answer(self, router, audit):
        llm = ScriptedLLM(AnthropicRequestAdapter(), anthropic_search_script())
        engine = make_engine(llm, router)

        result = await engine.execute_query("What happened in the last hour?")

        assert result.response == "Found 5 events."
        assert result.tool_calls == (
            ToolInvocation(Backend.AUDIT, "audit.search_events", {"limit": 5}),
        )
        assert result.to_dict()["toolCalls"] == [
            {"backend": "audit", "name": "audit.search_events", "arguments": {"limit": 5}}
        ]
        assert result.tool_results[0].success
        assert result.tool_results[0].payload == '{"total": 5}'
        assert result.reasoning == "Let me search the audit log."
        assert result.timestamp == NOW.isoformat()
        assert audit.calls == [("audit.search_events", {"limit": 5})]

    @pytest.mark.asyncio
    async def test_history_shape(self, router):
        llm = ScriptedLLM(AnthropicRequestAdapter(), anthropic_search_script())
        engine = make_engine(llm, router)

        await engine.execute_query("What happened in the last hour?")

        user, assistant, results, final = engine.history
        assert user == {
            "role": "user",
            "content": "[Current date/time: 2024-05-01T12:00:00.000Z]\n\n"
            "User Query: What happened in the last hour?",
        }
        assert assistant["role"] == "assistant"
        assert [b["type"] for b in assistant["content"]] == ["text", "tool_use"]
        assert assistant["content"][1]["id"] == "toolu_1"

        assert results["role"] == "user"
        (block,) = results["content"]
        assert block["type"] == "tool_result"
        assert block["tool_use_id"] == "toolu_1"
        assert json.loads(block["content"]) == {
            "backend": "audit",
            "name": "audit.search_events",
            "success": True,
            "result": '{"total": 5}',
        }
        assert final == {"role": "assistant", "content": "Found 5 events."}

    @pytest.mark.asyncio
    async def test_request_carries_system_prompt_and_catalog(self, router):
        llm = ScriptedLLM(AnthropicRequestAdapter(), anthropic_search_script())
        engine = make_engine(llm, router, params={"max_tokens": 2048})

        await engine.execute_query("hi")

        messages, params = llm.requests[0]
        assert messages[0]["role"] == "system"
        assert "2024-05-01T12:00:00.000Z" in messages[0]["content"]
        assert params["max_tokens"] == 2048
        tool_names = [tool["name"] for tool in params["tools"]]
        assert "search_audit_events" in tool_names
        assert all("input_schema" in tool for tool in params["tools"])

        request = llm.adapter.to_provider(messages, params)
        assert request["system"].startswith("You are VaultLens")
        assert [m["role"] for m in request["messages"]] == ["user"]

        # second call sees the tool round
        messages, _ = llm.requests[1]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_n_rounds_then_answer(self, router, audit, vault):
        script = [
            anthropic_message(tool_use("t1", "list_mounts", {})),
            anthropic_message(
                tool_use("t2", "aggregate_audit_events", {"group_by": "operation"}),
                tool_use("t3", "search_audit_events", {"limit": 5}),
            ),
            anthropic_message(tool_use("t4", "read_auth_role", {"mount": "approle", "role": "ci"})),
            anthropic_message(text_block("Done.")),
        ]
        llm = ScriptedLLM(AnthropicRequestAdapter(), script)
        engine = make_engine(llm, router)

        result = await engine.execute_query("Who used approle?")

        assert len(llm.requests) == 4
        assert [c.name for c in result.tool_calls] == [
            "list_mounts",
            "audit.aggregate",
            "audit.search_events",
            "read_auth_role",
        ]
        assert [o.name for o in result.tool_results] == [c.name for c in result.tool_calls]
        assert len(vault.calls) == 2
        assert len(audit.calls) == 2

        # one assistant turn and one result turn per round
        roles = [m["role"] for m in engine.history]
        assert roles == ["user"] + ["assistant", "user"] * 3 + ["assistant"]
        assert [b["tool_use_id"] for b in engine.history[4]["content"]] == ["t2", "t3"]

    @pytest.mark.asyncio
    async def test_answer_without_tools(self, router):
        llm = ScriptedLLM(AnthropicRequestAdapter(), [anthropic_message(text_block("Hello."))])
        engine = make_engine(llm, router)

        result = await engine.execute_query("hi")

        assert result.response == "Hello."
        assert result.reasoning == "Hello."
        assert result.tool_calls == ()
        assert len(llm.requests) == 1

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_the_model(self, router):
        script = [
            anthropic_message(tool_use("t1", "launch_missiles", {})),
            anthropic_message(text_block("I cannot do that.")),
        ]
        llm = ScriptedLLM(AnthropicRequestAdapter(), script)
        engine = make_engine(llm, router)

        result = await engine.execute_query("launch")

        (outcome,) = result.tool_results
        assert outcome.success is False
        assert outcome.error == "Unknown tool: launch_missiles"
        sent = engine.history[2]["content"][0]["content"]
        assert json.loads(sent)["error"] == "Unknown tool: launch_missiles"

    @pytest.mark.asyncio
    async def test_round_limit(self, router):
        script = [anthropic_message(tool_use(f"t{i}", "lookup_self", {})) for i in range(5)]
        llm = ScriptedLLM(AnthropicRequestAdapter(), script)
        engine = make_engine(llm, router, max_rounds=2)

        with pytest.raises(ToolLoopLimitError):
            await engine.execute_query("loop forever")

        assert len(llm.requests) == 3

    @pytest.mark.asyncio
    async def test_llm_failure_propagates_and_keeps_history(self, router):
        script = [ConnectionError("network down"), anthropic_message(text_block("Back online."))]
        llm = ScriptedLLM(AnthropicRequestAdapter(), script)
        engine = make_engine(llm, router)

        with pytest.raises(LLMBridgeError) as excinfo:
            await engine.execute_query("status?")

        assert isinstance(excinfo.value.original_exc, ConnectionError)
        assert isinstance(excinfo.value.__cause__, ConnectionError)
        assert [m["role"] for m in engine.history] == ["user"]
        assert engine.query_history == []

        result = await engine.execute_query("status?")
        assert result.response == "Back online."


class TestOpenAILoop:
    @pytest.mark.asyncio
    async def test_search_then_answer(self, router):
        script = [
            openai_completion(tool_calls=[("call_1", "search_audit_events", {"limit": 5})]),
            openai_completion("Found 5 events."),
        ]
        llm = ScriptedLLM(OpenAIRequestAdapter(), script)
        engine = make_engine(llm, router)

        result = await engine.execute_query("What happened?")

        assert result.response == "Found 5 events."
        assert result.tool_calls == (
            ToolInvocation(Backend.AUDIT, "audit.search_events", {"limit": 5}),
        )
        assert result.reasoning == ""

        user, assistant, tool, final = engine.history
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert tool["role"] == "tool"
        assert tool["tool_call_id"] == "call_1"
        assert json.loads(tool["content"])["success"] is True
        assert final == {"role": "assistant", "content": "Found 5 events."}

        _, params = llm.requests[0]
        assert all(tool["type"] == "function" for tool in params["tools"])

    @pytest.mark.asyncio
    async def test_one_tool_message_per_call(self, router):
        script = [
            openai_completion(
                tool_calls=[
                    ("call_a", "list_mounts", {}),
                    ("call_b", "lookup_self", {}),
                ]
            ),
            openai_completion("ok"),
        ]
        llm = ScriptedLLM(OpenAIRequestAdapter(), script)
        engine = make_engine(llm, router)

        await engine.execute_query("mounts and token")

        assert [m.get("tool_call_id") for m in engine.history[2:4]] == ["call_a", "call_b"]

    @pytest.mark.asyncio
    async def test_malformed_arguments_still_get_a_result(self, router, vault):
        script = [
            openai_completion(tool_calls=[("call_1", "list_mounts", "{not json")]),
            openai_completion("ok"),
        ]
        llm = ScriptedLLM(OpenAIRequestAdapter(), script)
        engine = make_engine(llm, router)

        result = await engine.execute_query("mounts")

        assert vault.calls == [("list_mounts", {})]
        assert result.tool_calls[0].arguments == {}
        assert engine.history[2]["tool_call_id"] == "call_1"


class TestStreaming:
    @pytest.mark.asyncio
    async def test_matches_non_streaming_result(self, audit, vault):
        streamed_llm = ScriptedLLM(
            AnthropicRequestAdapter(),
            [
                anthropic_stream(anthropic_search_script()[0], ["Let me search ", "the audit log."]),
                anthropic_stream(anthropic_search_script()[1], ["Found 5 ", "events."]),
            ],
        )
        plain_llm = ScriptedLLM(AnthropicRequestAdapter(), anthropic_search_script())

        streamed = make_engine(streamed_llm, ToolRouter({Backend.AUDIT: audit, Backend.VAULT: vault}))
        plain = make_engine(plain_llm, ToolRouter({Backend.AUDIT: audit, Backend.VAULT: vault}))

        events = [event async for event in streamed.execute_query_stream("What happened?")]
        expected = await plain.execute_query("What happened?")

        assert [e.type for e in events] == [
            "text",
            "text",
            "tool_call",
            "tool_result",
            "text",
            "text",
            "done",
        ]
        assert "".join(e.content for e in events if isinstance(e, TextEvent)) == (
            "Let me search the audit log.Found 5 events."
        )

        done = events[-1]
        assert isinstance(done, DoneEvent)
        assert done.result == expected
        assert streamed.history == plain.history
        assert streamed.query_history == [done.result]

    @pytest.mark.asyncio
    async def test_openai_tool_call_fragments(self, router, audit):
        script = [
            openai_stream(tool_calls=[("call_1", "search_audit_events", {"limit": 5})]),
            openai_stream(["Found 5 ", "events."]),
        ]
        llm = ScriptedLLM(OpenAIRequestAdapter(), script)
        engine = make_engine(llm, router)

        events = [event async for event in engine.execute_query_stream("What happened?")]

        call_event = next(e for e in events if isinstance(e, ToolCallEvent))
        assert call_event.invocation == ToolInvocation(
            Backend.AUDIT, "audit.search_events", {"limit": 5}
        )
        assert audit.calls == [("audit.search_events", {"limit": 5})]
        assert events[-1].result.response == "Found 5 events."
        assert engine.history[1]["tool_calls"][0]["function"]["arguments"] == '{"limit": 5}'

    @pytest.mark.asyncio
    async def test_event_wire_shapes(self, router):
        script = [
            anthropic_stream(anthropic_search_script()[0], ["Searching."]),
            anthropic_stream(anthropic_search_script()[1], ["Found 5 events."]),
        ]
        llm = ScriptedLLM(AnthropicRequestAdapter(), script)
        engine = make_engine(llm, router)

        wire = [event.to_dict() async for event in engine.execute_query_stream("q")]

        assert wire[0] == {"type": "text", "content": "Searching."}
        assert wire[1] == {
            "type": "tool_call",
            "toolCall": {"backend": "audit", "name": "audit.search_events", "arguments": {"limit": 5}},
        }
        assert wire[2]["type"] == "tool_result"
        assert wire[2]["toolResult"]["success"] is True
        assert wire[-1]["type"] == "done"
        assert wire[-1]["result"]["response"] == "Found 5 events."

    @pytest.mark.asyncio
    async def test_stream_failure_raises(self, router):
        llm = ScriptedLLM(AnthropicRequestAdapter(), [ConnectionError("reset by peer")])
        engine = make_engine(llm, router)

        with pytest.raises(LLMBridgeError):
            async for _ in engine.execute_query_stream("q"):
                pass


@pytest.mark.asyncio
async def test_parallel_tools_keep_request_order(router):
    script = [
        anthropic_stream(
            anthropic_message(
                tool_use("t1", "search_audit_events", {"limit": 5}),
                tool_use("t2", "list_mounts", {}),
                tool_use("t3", "lookup_self", {}),
            )
        ),
        anthropic_stream(anthropic_message(text_block("ok")), ["ok"]),
    ]
    llm = ScriptedLLM(AnthropicRequestAdapter(), script)
    engine = make_engine(llm, router, parallel_tools=True)

    events = [event async for event in engine.execute_query_stream("q")]

    kinds = [e.type for e in events if isinstance(e, (ToolCallEvent, ToolResultEvent))]
    assert kinds == ["tool_call"] * 3 + ["tool_result"] * 3
    result = events[-1].result
    assert [o.name for o in result.tool_results] == [
        "audit.search_events",
        "list_mounts",
        "lookup_self",
    ]
    assert [b["tool_use_id"] for b in engine.history[2]["content"]] == ["t1", "t2", "t3"]


class TestSessionState:
    @pytest.mark.asyncio
    async def test_context_seeds_empty_history_only(self, router):
        context = ConversationContext(
            messages=[
                {"role": "user", "content": "earlier question"},
                {"role": "assistant", "content": "earlier answer"},
            ]
        )
        llm = ScriptedLLM(
            AnthropicRequestAdapter(),
            [anthropic_message(text_block("one")), anthropic_message(text_block("two"))],
        )
        engine = make_engine(llm, router)

        await engine.execute_query("first", context)
        await engine.execute_query("second", context)

        contents = [m["content"] for m in engine.history]
        assert contents[:2] == ["earlier question", "earlier answer"]
        assert contents.count("earlier question") == 1
        assert len(contents) == 6

    @pytest.mark.asyncio
    async def test_query_history_is_bounded(self, router):
        script = [anthropic_message(text_block(f"answer {i}")) for i in range(3)]
        llm = ScriptedLLM(AnthropicRequestAdapter(), script)
        engine = make_engine(llm, router, query_history_limit=2)

        for i in range(3):
            await engine.execute_query(f"question {i}")

        assert [r.response for r in engine.query_history] == ["answer 1", "answer 2"]

        engine.clear_history()
        assert engine.history == []
        assert engine.query_history == []

    @pytest.mark.asyncio
    async def test_aclose_closes_llm_and_servers(self, audit, vault):
        llm = ScriptedLLM(AnthropicRequestAdapter(), [])
        router = ToolRouter({Backend.AUDIT: audit, Backend.VAULT: vault})

        async with make_engine(llm, router):
            pass

        assert llm.closed
        assert (audit.closed, vault.closed) == (1, 1)

    def test_rejects_zero_rounds(self, router):
        llm = ScriptedLLM(AnthropicRequestAdapter(), [])
        with pytest.raises(ValueError):
            make_engine(llm, router, max_rounds=0)
