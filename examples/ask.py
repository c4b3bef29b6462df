"""
Ask VaultLens a question from the command line.

Execute with, for example:
    ANTHROPIC_API_KEY=sk-... VAULT_TOKEN=s.xxx python examples/ask.py "Who logged in via approle in the last hour?"

Both MCP server binaries must be reachable through VAULT_AUDIT_MCP_COMMAND and
VAULT_MCP_COMMAND (defaults: ./vault-audit-mcp and ./vault-mcp-server).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from dataclasses import replace

from vaultlens import ActivityEvent, DocumentationSuggestion, Provider, Settings, create_engine

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


def print_activity(event: ActivityEvent) -> None:
    logger.info("tool %s/%s -> %s (%.0fms)", event.backend, event.name, event.status, event.duration_ms)


def print_suggestion(suggestion: DocumentationSuggestion) -> None:
    print(f"  docs: {suggestion.title} <{suggestion.url}>")


async def vault_token() -> dict[str, str]:
    """Stand-in for a real credential provider."""
    return {"VAULT_TOKEN": os.environ.get("VAULT_TOKEN", "")}


async def main() -> None:
    parser = argparse.ArgumentParser(description="Ask VaultLens a question")
    parser.add_argument("question", nargs="+", help="natural-language question")
    parser.add_argument("--provider", choices=[p.value for p in Provider], default=None)
    parser.add_argument("--stream", action="store_true", help="print text as it arrives")
    args = parser.parse_args()

    settings = Settings.from_env()
    if args.provider:
        settings = replace(settings, provider=Provider(args.provider))

    question = " ".join(args.question)
    async with create_engine(
        settings,
        vault_env_provider=vault_token,
        activity_handler=print_activity,
        suggestion_handler=print_suggestion,
    ) as engine:
        if args.stream:
            async for event in engine.execute_query_stream(question):
                if event.type == "text":
                    print(event.content, end="", flush=True)
                elif event.type == "tool_call":
                    print(f"\n[calling {event.invocation.name}]")
            print()
        else:
            result = await engine.execute_query(question)
            print(result.response)
            print(f"\n{len(result.tool_calls)} tool call(s)")


if __name__ == "__main__":
    asyncio.run(main())
