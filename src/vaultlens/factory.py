from __future__ import annotations

import logging
from typing import Any, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from vaultlens.client import create_llm
from vaultlens.config import EnvProvider, Settings
from vaultlens.engine import ConversationEngine
from vaultlens.router import ActivityHandler, SuggestionHandler, ToolRouter

__all__ = ["create_llm", "create_engine"]


def create_engine(
    settings: Optional[Settings] = None,
    *,
    vault_env_provider: Optional[EnvProvider] = None,
    activity_handler: Optional[ActivityHandler] = None,
    suggestion_handler: Optional[SuggestionHandler] = None,
    api_key: str | None = None,
    client: AsyncOpenAI | AsyncAnthropic | None = None,
    logger: logging.Logger | None = None,
    **engine_kwargs: Any,
) -> ConversationEngine:
    """
    Build one session's engine: an LLM client, a router owning its own pair
    of tool server subprocesses, and the loop that ties them together.

    Args:
        settings: Defaults to ``Settings.from_env()``.
        vault_env_provider: Async callable returning fresh credentials
            (``VAULT_TOKEN``) each time the Vault server is spawned.
        activity_handler: Receives one ``ActivityEvent`` per tool call.
        suggestion_handler: Receives documentation suggestions.
        api_key: Overrides the provider key lookup.
        client: Pre-configured ``AsyncOpenAI`` / ``AsyncAnthropic`` client.
        logger: Shared by the LLM, the router and the engine.
        **engine_kwargs: Forwarded to ``ConversationEngine``.
    """
    settings = settings or Settings.from_env()

    llm = create_llm(
        settings.provider,
        settings.model,
        api_key=api_key,
        client=client,
        logger=logger,
    )
    router = ToolRouter.from_settings(
        settings,
        vault_env_provider=vault_env_provider,
        activity_handler=activity_handler,
        suggestion_handler=suggestion_handler,
        logger=logger,
    )

    engine_kwargs.setdefault("params", {"max_tokens": settings.max_tokens})
    engine_kwargs.setdefault("max_rounds", settings.max_rounds)
    engine_kwargs.setdefault("query_history_limit", settings.query_history_limit)
    engine_kwargs.setdefault("parallel_tools", settings.parallel_tools)
    return ConversationEngine(llm, router, logger=logger, **engine_kwargs)
