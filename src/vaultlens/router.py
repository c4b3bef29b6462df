"""
Tool router: one entry point for every tool invocation the model requests.

Invocations are dispatched by backend kind. The two remote kinds each own a
stdio transport, initialized on first use; the local ``system`` kind is
handled in-process. Invocation-level failures never raise: they come back
as failed :class:`ToolOutcome` values so the model can react to them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

from vaultlens.config import EnvProvider, Settings
from vaultlens.transport import ServerToolResult, StdioTransport
from vaultlens.types import (
    ActivityEvent,
    Backend,
    DocumentationSuggestion,
    ToolInvocation,
    ToolOutcome,
)

__all__ = ["ToolTransport", "ToolRouter", "ActivityHandler", "SuggestionHandler"]

ActivityHandler = Callable[[ActivityEvent], None]
SuggestionHandler = Callable[[DocumentationSuggestion], None]


class ToolTransport(Protocol):
    """What the router needs from a remote tool server client."""

    async def initialize(self) -> None: ...

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> ServerToolResult: ...

    async def close(self) -> None: ...


class ToolRouter:
    """
    Routes :class:`ToolInvocation` objects to their backend.

    Each router owns its transports; create one router per session and
    close it with :meth:`aclose` when the session ends.
    """

    def __init__(
        self,
        clients: Mapping[Backend, ToolTransport],
        *,
        activity_handler: Optional[ActivityHandler] = None,
        suggestion_handler: Optional[SuggestionHandler] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        self._clients: dict[Backend, ToolTransport] = dict(clients)
        self._initialized: dict[Backend, bool] = {backend: False for backend in self._clients}
        self.activity_handler = activity_handler
        self.suggestion_handler = suggestion_handler
        self.logger = logger or logging.getLogger(__name__)
        self.name = name or self.__class__.__name__

        self._handlers: dict[Backend, Callable[[ToolInvocation], Awaitable[ToolOutcome]]] = {
            Backend.AUDIT: self._execute_remote,
            Backend.VAULT: self._execute_remote,
            Backend.SYSTEM: self._execute_system,
        }
        self._system_tools: dict[str, Callable[[dict[str, Any]], Any]] = {
            "suggest_documentation": self._suggest_documentation,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        vault_env_provider: Optional[EnvProvider] = None,
        **kwargs: Any,
    ) -> "ToolRouter":
        """
        Build a router with one stdio transport per remote backend.

        Args:
            settings: Server commands, environment overrides and timeouts.
            vault_env_provider: Async callable returning credentials (for
                example ``VAULT_TOKEN``) for the Vault server; evaluated each
                time the server is spawned.
            **kwargs: Forwarded to the constructor (handlers, logger, name).
        """
        vault_config = settings.vault_server
        if vault_env_provider is not None:
            vault_config = vault_config.with_env_provider(vault_env_provider)

        logger = kwargs.get("logger")
        clients = {
            Backend.AUDIT: StdioTransport(settings.audit_server, logger=logger),
            Backend.VAULT: StdioTransport(vault_config, logger=logger),
        }
        return cls(clients, **kwargs)

    # --- public API ----------------------------------------------------------
    async def execute_tool(self, invocation: ToolInvocation) -> ToolOutcome:
        """Run one invocation. Never raises for invocation-level failures."""
        self._log(f"Executing {invocation.backend} tool: {invocation.name}")
        started = time.perf_counter()

        handler = self._handlers.get(invocation.backend) if invocation.backend else None
        try:
            if handler is None:
                outcome = ToolOutcome.failed(invocation, self._unroutable(invocation))
            else:
                outcome = await handler(invocation)
        except Exception as exc:
            outcome = ToolOutcome.failed(invocation, str(exc) or exc.__class__.__name__)

        duration_ms = (time.perf_counter() - started) * 1000
        self._emit(invocation, outcome, duration_ms)
        return outcome

    async def execute_plan(
        self,
        invocations: Iterable[ToolInvocation],
        *,
        is_critical: Optional[Callable[[ToolInvocation], bool]] = None,
    ) -> list[ToolOutcome]:
        """
        Run invocations strictly in order.

        Stops at the first failed step that is critical. Every step is
        critical unless *is_critical* says otherwise.
        """
        outcomes: list[ToolOutcome] = []
        for invocation in invocations:
            outcome = await self.execute_tool(invocation)
            outcomes.append(outcome)

            if not outcome.success and (is_critical is None or is_critical(invocation)):
                self._log(
                    f"Critical step failed: {invocation.name}, stopping execution",
                    logging.WARNING,
                )
                break
        return outcomes

    async def execute_many(
        self,
        invocations: Sequence[ToolInvocation],
        *,
        concurrent: bool = False,
    ) -> list[ToolOutcome]:
        """Run one round of invocations; outcomes are in request order."""
        if concurrent and len(invocations) > 1:
            return list(await asyncio.gather(*(self.execute_tool(i) for i in invocations)))
        return [await self.execute_tool(invocation) for invocation in invocations]

    async def reset(self) -> None:
        """
        Close every remote client and clear its initialized flag.

        Call when the identity behind the subprocesses changes; the next
        call re-spawns them with fresh credentials.
        """
        self._log("Resetting MCP clients...")
        for backend, client in self._clients.items():
            await client.close()
            self._initialized[backend] = False
        self._log("MCP clients reset complete")

    async def aclose(self) -> None:
        await self.reset()

    async def __aenter__(self) -> "ToolRouter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def is_initialized(self, backend: Backend) -> bool:
        return self._initialized.get(backend, False)

    # --- backends ------------------------------------------------------------
    async def _execute_remote(self, invocation: ToolInvocation) -> ToolOutcome:
        backend = invocation.backend
        client = self._clients.get(backend)  # type: ignore[arg-type]
        if client is None:
            return ToolOutcome.failed(invocation, f"No client configured for {backend} tools")

        started = time.perf_counter()
        self._log(f"[{backend}] Calling {invocation.name}", logging.DEBUG)

        if not self._initialized[backend]:  # type: ignore[index]
            await client.initialize()
            self._initialized[backend] = True  # type: ignore[index]

        result = await client.call_tool(invocation.name, dict(invocation.arguments))
        self._log(
            f"[{backend}] Result {invocation.name} success={result.success} "
            f"duration_ms={(time.perf_counter() - started) * 1000:.0f}"
        )

        if result.success:
            return ToolOutcome.ok(invocation, result.result)
        return ToolOutcome.failed(invocation, result.error or "MCP tool call error")

    async def _execute_system(self, invocation: ToolInvocation) -> ToolOutcome:
        tool = self._system_tools.get(invocation.name)
        if tool is None:
            return ToolOutcome.failed(invocation, f"Unknown system tool: {invocation.name}")
        return ToolOutcome.ok(invocation, tool(dict(invocation.arguments)))

    def _suggest_documentation(self, arguments: dict[str, Any]) -> dict[str, Any]:
        for key in ("title", "url", "description"):
            value = arguments.get(key)
            if not value or not isinstance(value, str):
                raise ValueError(f"{key} is required and must be a string")

        context = arguments.get("context")
        suggestion = DocumentationSuggestion(
            title=arguments["title"],
            url=arguments["url"],
            description=arguments["description"],
            context=context if isinstance(context, str) else None,
        )
        if self.suggestion_handler is not None:
            self.suggestion_handler(suggestion)
        return {"message": "Documentation suggestion added"}

    # --- helpers -------------------------------------------------------------
    @staticmethod
    def _unroutable(invocation: ToolInvocation) -> str:
        if invocation.backend is None:
            return f"Unknown tool: {invocation.name}"
        return f"Unknown tool type: {invocation.backend}"

    def _emit(self, invocation: ToolInvocation, outcome: ToolOutcome, duration_ms: float) -> None:
        if self.activity_handler is None:
            return
        event = ActivityEvent(
            backend=invocation.backend,
            name=invocation.name,
            status="success" if outcome.success else "error",
            duration_ms=duration_ms,
            description=(
                f"Completed in {duration_ms:.0f}ms"
                if outcome.success
                else f"Failed: {outcome.error}"
            ),
            error=outcome.error,
        )
        try:
            self.activity_handler(event)
        except Exception:
            self.logger.exception(f"[{self.name}] Activity handler failed")

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")
