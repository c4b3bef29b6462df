from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from vaultlens.errors import VaultLensError
from vaultlens.types import ToolCallRequest


@dataclass
class ChatResponse:
    """Unified response object for all LLM providers.

    Streaming yields partial responses (``final=False``) carrying only a
    text delta, followed by one ``final`` response for the whole turn.
    """

    content: str
    tool_calls: list[ToolCallRequest] | None = None
    raw: Any = None
    error: Optional[str] = None
    stop_reason: Optional[str] = None
    final: bool = True
    exception: Optional[BaseException] = field(default=None, repr=False)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def raise_for_error(self) -> None:
        if not self.is_error:
            return
        if self.exception is not None:
            raise self.exception
        raise VaultLensError(self.error)
