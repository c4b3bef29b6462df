"""
Conversation engine: the provider-agnostic agentic loop.

Each round sends the system prompt, the session history and the tool catalog
to the model. When the model's stop signal asks for tools, every requested
call is routed, and the assistant turn plus one synthetic turn carrying the
outcomes are appended before the next model call. A turn without tool
requests ends the query.

One engine holds one session's history; do not run two queries on the same
engine at once.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Optional, Sequence

from vaultlens.catalog import CATALOG, ToolSpec
from vaultlens.client import BaseAsyncLLM
from vaultlens.errors import ToolLoopLimitError
from vaultlens.params import ChatMessage, merge_params
from vaultlens.prompt import build_system_prompt, contextual_query, utcnow
from vaultlens.response import ChatResponse
from vaultlens.router import ToolRouter
from vaultlens.types import (
    ConversationContext,
    DoneEvent,
    QueryResult,
    StreamEvent,
    TextEvent,
    ToolCallEvent,
    ToolCallResult,
    ToolInvocation,
    ToolOutcome,
    ToolResultEvent,
)

__all__ = ["ConversationEngine"]

DEFAULT_MAX_ROUNDS = 16
DEFAULT_QUERY_HISTORY = 50


class ConversationEngine:
    """
    Drives one session's conversation with an LLM and a tool router.

    Args:
        llm: Provider client; its adapter decides tool use and encodes results.
        router: Executes the invocations the model asks for.
        catalog: Tools offered to the model on every call.
        params: Default request params (``max_tokens``, ``temperature``...).
        max_rounds: Tool rounds allowed per query before giving up.
        query_history_limit: How many ``QueryResult`` objects to keep.
        parallel_tools: Dispatch the calls of one round concurrently.
            Outcomes keep request order either way.
        system_prompt: Builds the system instructions for a point in time.
        clock: Source of "now" for prompts and timestamps.
    """

    def __init__(
        self,
        llm: BaseAsyncLLM,
        router: ToolRouter,
        *,
        catalog: tuple[ToolSpec, ...] = CATALOG,
        params: Optional[dict[str, Any]] = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        query_history_limit: int = DEFAULT_QUERY_HISTORY,
        parallel_tools: bool = False,
        system_prompt: Callable[[datetime], str] = build_system_prompt,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.llm = llm
        self.router = router
        self.catalog = catalog
        self.params = dict(params or {})
        self.max_rounds = max_rounds
        self.parallel_tools = parallel_tools
        self.system_prompt = system_prompt
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.name = name or self.__class__.__name__

        self._history: list[ChatMessage] = []
        self._query_history: deque[QueryResult] = deque(maxlen=query_history_limit)

    # --- history -------------------------------------------------------------
    @property
    def history(self) -> list[ChatMessage]:
        """A copy of the conversation turns, oldest first."""
        return list(self._history)

    @property
    def query_history(self) -> list[QueryResult]:
        return list(self._query_history)

    def clear_history(self) -> None:
        self._history.clear()
        self._query_history.clear()

    # --- queries -------------------------------------------------------------
    async def execute_query(
        self, query: str, context: Optional[ConversationContext] = None
    ) -> QueryResult:
        """
        Answer one question, running as many tool rounds as the model needs.

        Raises:
            LLMBridgeError: the model call failed. History up to the failed
                call is kept so the query can be retried.
            ToolLoopLimitError: the model asked for more than ``max_rounds``
                tool rounds.
        """
        self._log(f"Processing query: {query}")
        self._begin(query, context)

        calls: list[ToolInvocation] = []
        outcomes: list[ToolOutcome] = []
        reasoning: Optional[str] = None
        rounds = 0

        while True:
            response = await self.llm.chat(self._messages(), params=self._request_params())
            response.raise_for_error()
            if reasoning is None:
                reasoning = response.content

            if not self.llm.adapter.wants_tools(response):
                break
            rounds = self._next_round(rounds)
            async for _ in self._tool_round(response, calls, outcomes):
                pass

        return self._finish(query, response, calls, outcomes, reasoning or "")

    async def execute_query_stream(
        self, query: str, context: Optional[ConversationContext] = None
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Streaming counterpart of :meth:`execute_query`.

        Yields ``text`` events as the model writes, a ``tool_call`` and
        ``tool_result`` event per invocation, and a final ``done`` event
        carrying the same ``QueryResult`` the non-streaming call returns.
        """
        self._log(f"Processing streaming query: {query}")
        self._begin(query, context)

        calls: list[ToolInvocation] = []
        outcomes: list[ToolOutcome] = []
        reasoning: Optional[str] = None
        rounds = 0

        while True:
            response: Optional[ChatResponse] = None
            async for part in self.llm.stream(self._messages(), params=self._request_params()):
                if part.final:
                    response = part
                elif part.content:
                    yield TextEvent(content=part.content)

            if response is None:
                response = ChatResponse(content="", error=f"{self.llm.name} stream produced no response")
            response.raise_for_error()
            if reasoning is None:
                reasoning = response.content

            if not self.llm.adapter.wants_tools(response):
                break
            rounds = self._next_round(rounds)
            async for event in self._tool_round(response, calls, outcomes):
                yield event

        yield DoneEvent(result=self._finish(query, response, calls, outcomes, reasoning or ""))

    # --- lifecycle -----------------------------------------------------------
    async def aclose(self) -> None:
        """Stop the tool servers and close the LLM HTTP client."""
        await self.router.aclose()
        await self.llm.aclose()

    async def __aenter__(self) -> "ConversationEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --- internals -----------------------------------------------------------
    def _begin(self, query: str, context: Optional[ConversationContext]) -> None:
        if context is not None and context.messages and not self._history:
            self._history.extend(dict(m) for m in context.messages)
        self._history.append({"role": "user", "content": contextual_query(query, self.clock())})

    def _messages(self) -> list[ChatMessage]:
        return [
            {"role": "system", "content": self.system_prompt(self.clock())},
            *self._history,
        ]

    def _request_params(self) -> dict[str, Any]:
        return merge_params(self.params, {"tools": self.llm.adapter.render_tools(self.catalog)})

    def _next_round(self, rounds: int) -> int:
        if rounds >= self.max_rounds:
            self._log(f"Giving up after {rounds} tool rounds", logging.WARNING)
            raise ToolLoopLimitError(self.max_rounds)
        return rounds + 1

    async def _tool_round(
        self,
        response: ChatResponse,
        calls: list[ToolInvocation],
        outcomes: list[ToolOutcome],
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Execute every tool call of one model turn.

        History gets the assistant turn and its results together, after the
        last outcome, so it never holds a tool request without its results.
        """
        adapter = self.llm.adapter
        requests = response.tool_calls or []
        invocations = [adapter.to_invocation(request) for request in requests]
        self._log(f"Model requested {len(invocations)} tool call(s)")

        round_outcomes: list[ToolOutcome] = []
        if self.parallel_tools:
            for invocation in invocations:
                yield ToolCallEvent(invocation=invocation)
            round_outcomes = await self.router.execute_many(invocations, concurrent=True)
            for outcome in round_outcomes:
                yield ToolResultEvent(outcome=outcome)
        else:
            for invocation in invocations:
                yield ToolCallEvent(invocation=invocation)
                outcome = await self.router.execute_tool(invocation)
                round_outcomes.append(outcome)
                yield ToolResultEvent(outcome=outcome)

        results = [
            ToolCallResult(id=request.id, content=adapter.format_outcome(outcome))
            for request, outcome in zip(requests, round_outcomes)
        ]
        self._history.append(adapter.assistant_message_from(response.raw))
        self._history.extend(adapter.tool_results_messages(results))
        calls.extend(invocations)
        outcomes.extend(round_outcomes)

    def _finish(
        self,
        query: str,
        response: ChatResponse,
        calls: Sequence[ToolInvocation],
        outcomes: Sequence[ToolOutcome],
        reasoning: str,
    ) -> QueryResult:
        # providers reject empty assistant turns on the next call
        if response.content:
            self._history.append({"role": "assistant", "content": response.content})
        result = QueryResult(
            query=query,
            response=response.content,
            tool_calls=tuple(calls),
            tool_results=tuple(outcomes),
            reasoning=reasoning,
            timestamp=self.clock().isoformat(),
        )
        self._query_history.append(result)
        self._log(f"Query complete after {len(calls)} tool call(s)")
        return result

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")
