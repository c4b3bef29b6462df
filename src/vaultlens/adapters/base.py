"""Behaviour shared by every provider adapter."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from vaultlens.catalog import TOOL_ROUTES
from vaultlens.types import Backend, ToolCallRequest, ToolInvocation, ToolOutcome

_logger = logging.getLogger(__name__)


class ToolRoutingMixin:
    """Maps catalog tool names to routed invocations and serializes outcomes."""

    routes: Mapping[str, tuple[Backend, str]]

    def __init__(
        self,
        routes: Optional[Mapping[str, tuple[Backend, str]]] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.routes = routes if routes is not None else TOOL_ROUTES
        self.logger = logger or _logger

    def to_invocation(self, call: ToolCallRequest) -> ToolInvocation:
        """Translate a model tool request; unknown names get no backend."""
        route = self.routes.get(call.name)
        if route is None:
            self.logger.warning("No route for tool %r", call.name)
            return ToolInvocation(backend=None, name=call.name, arguments=dict(call.arguments))
        backend, server_name = route
        return ToolInvocation(backend=backend, name=server_name, arguments=dict(call.arguments))

    def format_outcome(self, outcome: ToolOutcome) -> str:
        """Text the model sees for one outcome."""
        return json.dumps(outcome.to_dict(), default=str)

    @staticmethod
    def _as_text(content: Any) -> str:
        if isinstance(content, str):
            return content
        return json.dumps(content, default=str)
