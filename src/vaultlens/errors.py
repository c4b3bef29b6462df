"""
Error types for vaultlens.

Provider tracebacks are translated into a unified `LLMBridgeError`, while
preserving the original exception for full tracebacks. Transport faults get
their own hierarchy so the router can turn them into failed outcomes.
"""

from __future__ import annotations

import importlib
import logging
from typing import Final, Optional, Type

__all__: tuple[str, ...] = (
    "VaultLensError",
    "LLMBridgeError",
    "TransportError",
    "RequestTimeoutError",
    "ToolLoopLimitError",
    "classify_error",
)


class VaultLensError(RuntimeError):
    """Base class for every error raised by this package."""


class LLMBridgeError(VaultLensError):
    """Public bridge-level exception.

    Attributes:
        original_exc: The underlying provider exception.
    """

    original_exc: Exception

    def __init__(self, message: str, original_exc: Exception) -> None:
        super().__init__(message)
        self.original_exc = original_exc
        self.__cause__ = original_exc


class TransportError(VaultLensError):
    """The tool server subprocess could not be reached or written to."""


class RequestTimeoutError(TransportError, TimeoutError):
    """No response arrived for a JSON-RPC request within its deadline."""

    def __init__(self, request_id: int, timeout: float) -> None:
        super().__init__(f"MCP request {request_id} timed out")
        self.request_id = request_id
        self.timeout = timeout


class ToolLoopLimitError(VaultLensError):
    """The model kept requesting tools past the configured round limit."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Model requested tools for more than {max_rounds} rounds")
        self.max_rounds = max_rounds


def _import_exception(path: str) -> Type[Exception]:
    """Dynamically import an exception type, falling back to Exception."""
    module_name, _, attr = path.rpartition(".")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError):
        return Exception


OpenAI_APIError: Final = _import_exception("openai.APIError")
OpenAI_APIConnectionError: Final = _import_exception("openai.APIConnectionError")
OpenAI_RateLimitError: Final = _import_exception("openai.RateLimitError")

Anthropic_APIError: Final = _import_exception("anthropic.APIError")
Anthropic_APIConnectionError: Final = _import_exception("anthropic.APIConnectionError")
Anthropic_RateLimitError: Final = _import_exception("anthropic.RateLimitError")

API_ERRORS: Final[tuple[Type[Exception], ...]] = (
    OpenAI_APIError,
    Anthropic_APIError,
)

CONN_ERRORS: Final[tuple[Type[Exception], ...]] = (
    OpenAI_APIConnectionError,
    Anthropic_APIConnectionError,
    TimeoutError,
    ConnectionError,
)

RATE_LIMIT_ERRORS: Final[tuple[Type[Exception], ...]] = (
    OpenAI_RateLimitError,
    Anthropic_RateLimitError,
)


def classify_error(
    exc: Exception,
    logger: Optional[logging.Logger] = None,
) -> LLMBridgeError:
    """Wrap an SDK exception in LLMBridgeError with a friendly, concise message."""
    log = logger or logging.getLogger("vaultlens.errors")

    if isinstance(exc, RATE_LIMIT_ERRORS):
        msg = "Rate-limit exceeded, please retry later"
    elif isinstance(exc, CONN_ERRORS):
        msg = "Connection problem, unable to reach the LLM provider"
    elif isinstance(exc, API_ERRORS):
        msg = "Provider reported an internal error"
    else:
        msg = exc.__class__.__name__

    log.warning("Wrapping provider exception: %r", exc)
    return LLMBridgeError(f"{msg}: {exc}", exc)
