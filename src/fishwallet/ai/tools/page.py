"""Page-automation tools for the voice assistant.

The tools drive whatever page the preview panel is showing through a
:class:`PageController`. The desktop shell supplies the real controller;
none of these tools change persisted state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol, runtime_checkable

from ..orchestration.types import RequestContext
from .base import FamilyExecutorBase, require_str
from .errors import InvalidParameterError, UnavailableError
from .registry import ParameterSchema, ToolCatalog, ToolFamily, ToolSchema

__all__ = ["PAGE_TOOLS", "PageController", "PageToolExecutor", "page_catalog", "MAX_WAIT_MS"]

LOGGER = logging.getLogger(__name__)

MAX_WAIT_MS = 5000
SCROLL_DIRECTIONS = ("up", "down", "top", "bottom")


@runtime_checkable
class PageController(Protocol):
    async def read_dom(self) -> str: ...

    async def query_selector_all(self, selector: str) -> list[Mapping[str, Any]]: ...

    async def click(self, selector: str, index: int = 0) -> str: ...

    async def type_text(self, selector: str, text: str, index: int = 0, clear_first: bool = True) -> str: ...

    async def scroll(self, direction: str, pixels: int = 400) -> str: ...

    async def current_url(self) -> str: ...

    async def element_text(self, selector: str, index: int = 0) -> str: ...


_SELECTOR = ParameterSchema("selector", "string", 'CSS selector, e.g. "button" or "input[type=email]"', required=True)
_INDEX = ParameterSchema("index", "integer", "Index when several elements match (0-based, default 0)", minimum=0)


def _page(name: str, description: str, *params: ParameterSchema) -> ToolSchema:
    return ToolSchema(name=name, description=description, parameters=params, family=ToolFamily.OTHER)


PAGE_TOOLS: tuple[ToolSchema, ...] = (
    _page("read_page", "Read the current page as a simplified HTML tree. Use this first."),
    _page("find_elements", "Find elements matching a CSS selector.", _SELECTOR),
    _page("click_element", "Click an element, scrolling it into view first.", _SELECTOR, _INDEX),
    _page(
        "type_text",
        "Type into an input or textarea.",
        _SELECTOR,
        ParameterSchema("text", "string", "Text to type", required=True),
        _INDEX,
        ParameterSchema("clear_first", "boolean", "Clear the existing value first (default true)"),
    ),
    _page(
        "scroll_page",
        "Scroll the page.",
        ParameterSchema("direction", "string", "Scroll direction", required=True, enum=SCROLL_DIRECTIONS),
        ParameterSchema("pixels", "integer", "Pixels to scroll (default 400)", minimum=1),
    ),
    _page("get_current_url", "Return the page's current URL."),
    _page("get_element_text", "Return the text content of an element.", _SELECTOR, _INDEX),
    _page(
        "wait",
        "Wait before continuing.",
        ParameterSchema("ms", "integer", f"Milliseconds to wait (max {MAX_WAIT_MS})", required=True, minimum=0),
    ),
)


def page_catalog() -> ToolCatalog:
    return ToolCatalog(PAGE_TOOLS)


def _index(arguments: Mapping[str, Any]) -> int:
    value = arguments.get("index") or 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidParameterError(message="'index' must be a non-negative integer")
    return value


class PageToolExecutor(FamilyExecutorBase):
    """Runs page tools against a :class:`PageController`."""

    family_name = ToolFamily.OTHER.value

    def __init__(self, controller: PageController | None = None) -> None:
        super().__init__()
        self._controller = controller
        self.register("read_page", self._read_page)
        self.register("find_elements", self._find_elements)
        self.register("click_element", self._click)
        self.register("type_text", self._type_text)
        self.register("scroll_page", self._scroll)
        self.register("get_current_url", self._current_url)
        self.register("get_element_text", self._element_text)
        self.register("wait", self._wait)

    def _page(self) -> PageController:
        if self._controller is None:
            raise UnavailableError(message="No preview page is attached")
        return self._controller

    async def _read_page(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        return await self._page().read_dom()

    async def _find_elements(self, arguments: Mapping[str, Any], context: RequestContext) -> list[dict[str, Any]]:
        matches = await self._page().query_selector_all(require_str(arguments, "selector"))
        return [dict(match) for match in matches]

    async def _click(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        return await self._page().click(require_str(arguments, "selector"), _index(arguments))

    async def _type_text(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        text = arguments.get("text")
        if not isinstance(text, str):
            raise InvalidParameterError(message="'text' is required and must be a string")
        return await self._page().type_text(
            require_str(arguments, "selector"),
            text,
            _index(arguments),
            arguments.get("clear_first") is not False,
        )

    async def _scroll(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        direction = require_str(arguments, "direction")
        if direction not in SCROLL_DIRECTIONS:
            raise InvalidParameterError(message=f"direction must be one of: {', '.join(SCROLL_DIRECTIONS)}")
        return await self._page().scroll(direction, int(arguments.get("pixels") or 400))

    async def _current_url(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        return await self._page().current_url()

    async def _element_text(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        return await self._page().element_text(require_str(arguments, "selector"), _index(arguments))

    async def _wait(self, arguments: Mapping[str, Any], context: RequestContext) -> str:
        ms = min(int(arguments.get("ms") or 1000), MAX_WAIT_MS)
        await asyncio.sleep(ms / 1000)
        return f"Waited {ms}ms"
