from __future__ import annotations

import os
from enum import StrEnum
from typing import Final

from dotenv import load_dotenv

load_dotenv()


class Provider(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


_ENV_VARS: Final[dict[Provider, str]] = {
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
}


def get_api_key(provider: Provider) -> str:
    """Return the API key for *provider* or raise RuntimeError."""
    try:
        env_var = _ENV_VARS[provider]
    except KeyError:
        raise RuntimeError(f"No config for {provider!s}") from None

    try:
        return os.environ[env_var]
    except KeyError as exc:
        raise RuntimeError(f"{env_var} missing") from exc


def provider_from_env(default: Provider = Provider.ANTHROPIC) -> Provider:
    """Read ``LLM_PROVIDER`` (case-insensitive)."""
    raw = os.environ.get("LLM_PROVIDER", default.value).strip().lower()
    try:
        return Provider(raw)
    except ValueError:
        supported = ", ".join(p.value for p in Provider)
        raise ValueError(
            f"Unknown LLM provider: {raw}. Supported providers: {supported}"
        ) from None


__all__ = ["Provider", "get_api_key", "provider_from_env"]
