"""Settings, provider selection and API key lookup."""

import pytest

from vaultlens.config import (
    AUDIT_TIMEOUT_SECONDS,
    VAULT_TIMEOUT_SECONDS,
    ServerConfig,
    Settings,
)
from vaultlens.provider import Provider, get_api_key, provider_from_env

_ENV_VARS = (
    "LLM_PROVIDER",
    "ANTHROPIC_MODEL",
    "OPENAI_MODEL",
    "LLM_MAX_TOKENS",
    "VAULTLENS_MAX_ROUNDS",
    "VAULTLENS_QUERY_HISTORY",
    "VAULTLENS_PARALLEL_TOOLS",
    "VAULT_AUDIT_MCP_COMMAND",
    "VAULT_MCP_COMMAND",
    "LOKI_URL",
    "VAULT_ADDR",
    "VAULT_SKIP_VERIFY",
    "VAULTLENS_MCP_TIMEOUT_AUDIT",
    "VAULTLENS_MCP_TIMEOUT_VAULT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env()

    assert settings.provider == Provider.ANTHROPIC
    assert settings.model == "claude-3-5-sonnet-20241022"
    assert settings.max_tokens == 4096
    assert settings.max_rounds == 16
    assert settings.parallel_tools is False
    assert settings.audit_server.command == "./vault-audit-mcp"
    assert settings.audit_server.env == {"LOKI_URL": "http://localhost:3100"}
    assert settings.audit_server.timeout == AUDIT_TIMEOUT_SECONDS == 120.0
    assert settings.vault_server.command == "./vault-mcp-server"
    assert settings.vault_server.env == {"VAULT_SKIP_VERIFY": "false"}
    assert settings.vault_server.timeout == VAULT_TIMEOUT_SECONDS == 30.0


def test_overrides(clean_env):
    clean_env.setenv("LLM_PROVIDER", "OpenAI")
    clean_env.setenv("OPENAI_MODEL", "gpt-4o-mini")
    clean_env.setenv("VAULTLENS_MAX_ROUNDS", "4")
    clean_env.setenv("VAULTLENS_PARALLEL_TOOLS", "true")
    clean_env.setenv("VAULT_MCP_COMMAND", "/opt/vault-mcp --stdio")
    clean_env.setenv("VAULT_ADDR", "https://vault.example:8200")
    clean_env.setenv("VAULT_SKIP_VERIFY", "1")
    clean_env.setenv("LOKI_URL", "http://loki:3100")
    clean_env.setenv("VAULTLENS_MCP_TIMEOUT_AUDIT", "300")

    settings = Settings.from_env()

    assert settings.provider == Provider.OPENAI
    assert settings.model == "gpt-4o-mini"
    assert settings.max_rounds == 4
    assert settings.parallel_tools is True
    assert settings.vault_server.command == "/opt/vault-mcp --stdio"
    assert settings.vault_server.env == {
        "VAULT_SKIP_VERIFY": "true",
        "VAULT_ADDR": "https://vault.example:8200",
    }
    assert settings.audit_server.env == {"LOKI_URL": "http://loki:3100"}
    assert settings.audit_server.timeout == 300.0


def test_unknown_provider(clean_env):
    clean_env.setenv("LLM_PROVIDER", "gemini")

    with pytest.raises(ValueError, match="Unknown LLM provider: gemini"):
        provider_from_env()


def test_api_key_lookup(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert get_api_key(Provider.ANTHROPIC) == "sk-ant-test"
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY missing"):
        get_api_key(Provider.OPENAI)


def test_with_env_provider_returns_copy():
    async def credentials():
        return {"VAULT_TOKEN": "s.x"}

    base = ServerConfig(name="VaultServer", command="./vault-mcp-server")
    derived = base.with_env_provider(credentials)

    assert base.env_provider is None
    assert derived.env_provider is credentials
    assert derived.name == base.name
