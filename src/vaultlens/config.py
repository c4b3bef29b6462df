"""
Runtime configuration read from the environment.

A ``.env`` file in the working directory is honoured through ``python-dotenv``
(loaded once by :mod:`vaultlens.provider`). Every setting has a default so
tests can build a :class:`Settings` without touching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Mapping, Optional

from vaultlens.provider import Provider, provider_from_env

__all__ = [
    "AUDIT_TIMEOUT_SECONDS",
    "VAULT_TIMEOUT_SECONDS",
    "CLIENT_NAME",
    "CLIENT_VERSION",
    "PROTOCOL_VERSION",
    "EnvProvider",
    "ServerConfig",
    "Settings",
]

# Audit queries may scan a large log window; Vault API calls are short.
AUDIT_TIMEOUT_SECONDS = 120.0
VAULT_TIMEOUT_SECONDS = 30.0

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "vaultlens"
CLIENT_VERSION = "1.0.0"

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_OPENAI_MODEL = "gpt-4o"

# Called at spawn time; returns extra environment for the subprocess.
EnvProvider = Callable[[], Awaitable[Mapping[str, str]]]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


@dataclass(frozen=True)
class ServerConfig:
    """How to launch one stdio tool server."""

    name: str
    command: str | list[str]
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float = VAULT_TIMEOUT_SECONDS
    env_provider: Optional[EnvProvider] = None

    def with_env_provider(self, env_provider: EnvProvider | None) -> "ServerConfig":
        return replace(self, env_provider=env_provider)


@dataclass(frozen=True)
class Settings:
    provider: Provider = Provider.ANTHROPIC
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL
    openai_model: str = DEFAULT_OPENAI_MODEL
    max_tokens: int = 4096
    max_rounds: int = 16
    query_history_limit: int = 50
    parallel_tools: bool = False
    audit_server: ServerConfig = field(
        default_factory=lambda: ServerConfig(
            name="AuditServer",
            command="./vault-audit-mcp",
            env={"LOKI_URL": "http://localhost:3100"},
            timeout=AUDIT_TIMEOUT_SECONDS,
        )
    )
    vault_server: ServerConfig = field(
        default_factory=lambda: ServerConfig(
            name="VaultServer",
            command="./vault-mcp-server",
            timeout=VAULT_TIMEOUT_SECONDS,
        )
    )

    @property
    def model(self) -> str:
        if self.provider == Provider.OPENAI:
            return self.openai_model
        return self.anthropic_model

    @classmethod
    def from_env(cls) -> "Settings":
        vault_env = {
            "VAULT_SKIP_VERIFY": str(_env_bool("VAULT_SKIP_VERIFY")).lower(),
        }
        if os.environ.get("VAULT_ADDR"):
            vault_env["VAULT_ADDR"] = os.environ["VAULT_ADDR"]

        return cls(
            provider=provider_from_env(),
            anthropic_model=os.environ.get("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC_MODEL),
            openai_model=os.environ.get("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
            max_tokens=_env_int("LLM_MAX_TOKENS", 4096),
            max_rounds=_env_int("VAULTLENS_MAX_ROUNDS", 16),
            query_history_limit=_env_int("VAULTLENS_QUERY_HISTORY", 50),
            parallel_tools=_env_bool("VAULTLENS_PARALLEL_TOOLS"),
            audit_server=ServerConfig(
                name="AuditServer",
                command=os.environ.get("VAULT_AUDIT_MCP_COMMAND", "./vault-audit-mcp"),
                env={"LOKI_URL": os.environ.get("LOKI_URL", "http://localhost:3100")},
                timeout=_env_float("VAULTLENS_MCP_TIMEOUT_AUDIT", AUDIT_TIMEOUT_SECONDS),
            ),
            vault_server=ServerConfig(
                name="VaultServer",
                command=os.environ.get("VAULT_MCP_COMMAND", "./vault-mcp-server"),
                env=vault_env,
                timeout=_env_float("VAULTLENS_MCP_TIMEOUT_VAULT", VAULT_TIMEOUT_SECONDS),
            ),
        )
