"""
Parameter normalization for LLM calls.

Contract
- Standard keys work across providers:
  temperature: float
  max_tokens: int
  top_p: float
  stream: bool
  tools: list
  tool_choice: str | dict
  stop: str | list[str]
  parallel_tool_calls: bool

- Provider specific keys go under `extra` and pass through unchanged.
  Unknown top-level keys are moved into extra.
"""

from __future__ import annotations

from typing import Any

from vaultlens.types import ChatMessage

__all__ = ["ChatMessage", "STANDARD_KEYS", "normalize_params", "merge_params"]

STANDARD_KEYS = {
    "temperature",
    "max_tokens",
    "top_p",
    "stream",
    "tools",
    "tool_choice",
    "stop",
    "user",
    "parallel_tool_calls",
    "seed",
}


def normalize_params(params: dict | None) -> dict:
    """
    Normalize a user-supplied params dict to a single internal shape.

    Returns a dict with only standard keys plus an `extra` dict.
    `stream` defaults to False. None values are kept so adapters can
    decide to drop them.

    >>> normalize_params({"max_tokens": 4096, "reasoning_effort": "high"})
    {'max_tokens': 4096, 'stream': False, 'extra': {'reasoning_effort': 'high'}}
    """
    if params is None:
        return {"stream": False, "extra": {}}
    if not isinstance(params, dict):
        raise TypeError(f"params must be a dict, got {type(params).__name__}")

    user_extra = params.get("extra") or {}
    if not isinstance(user_extra, dict):
        raise TypeError("params['extra'] must be a dict")

    std: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in params.items():
        if key == "extra":
            continue
        if key in STANDARD_KEYS:
            std[key] = value
        else:
            extra[key] = value

    std.setdefault("stream", False)
    # moved unknowns first, caller's explicit extra wins
    std["extra"] = {**extra, **user_extra}
    return std


def merge_params(defaults: dict | None, overrides: dict | None) -> dict:
    """
    Shallow-merge engine defaults with per-call overrides, then normalize.

    Top-level keys are overwritten by overrides; `extra` is merged with
    overrides winning per key.
    """
    base: dict = dict(defaults or {})
    if overrides:
        base_extra = dict(base.get("extra") or {})
        over_extra = dict(overrides.get("extra") or {})
        for key, value in overrides.items():
            if key != "extra":
                base[key] = value
        base["extra"] = {**base_extra, **over_extra}

    return normalize_params(base)
