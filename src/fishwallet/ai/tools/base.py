"""Shared plumbing for tool family executors."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Union

from ..orchestration.types import RequestContext
from .errors import InvalidParameterError, UnknownToolError

__all__ = ["FamilyExecutorBase", "Handler", "require_str", "require_int", "optional_str"]

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any], RequestContext], Union[Any, Awaitable[Any]]]


class FamilyExecutorBase:
    """Dispatches a tool name to a handler method registered by subclasses.

    Handlers return the ``data`` payload of a successful result and raise a
    :class:`~fishwallet.ai.tools.errors.ToolError` for domain failures.
    """

    family_name = "base"

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    @property
    def tool_names(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def execute(self, name: str, arguments: Mapping[str, Any], context: RequestContext) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(details={"tool": name, "family": self.family_name})
        outcome = handler(arguments, context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome


def require_str(arguments: Mapping[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidParameterError(message=f"'{key}' is required and must be a non-empty string")
    return value


def optional_str(arguments: Mapping[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidParameterError(message=f"'{key}' must be a string")
    return value


def require_int(arguments: Mapping[str, Any], key: str) -> int:
    value = arguments.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise InvalidParameterError(message=f"'{key}' is required and must be an integer")
    return int(value)
