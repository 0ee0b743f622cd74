"""Tests for preview page automation tools."""

from __future__ import annotations

import pytest

from fishwallet.ai.tools.errors import InvalidParameterError, UnavailableError
from fishwallet.ai.tools.page import MAX_WAIT_MS, PageController, PageToolExecutor, page_catalog


class FakePage:
    def __init__(self) -> None:
        self.actions: list[tuple] = []

    async def read_dom(self) -> str:
        return "<body><button>Buy</button></body>"

    async def query_selector_all(self, selector: str):
        return [{"tag": "button", "text": "Buy"}]

    async def click(self, selector: str, index: int = 0) -> str:
        self.actions.append(("click", selector, index))
        return f"Clicked {selector}"

    async def type_text(self, selector: str, text: str, index: int = 0, clear_first: bool = True) -> str:
        self.actions.append(("type", selector, text, index, clear_first))
        return "typed"

    async def scroll(self, direction: str, pixels: int = 400) -> str:
        self.actions.append(("scroll", direction, pixels))
        return "scrolled"

    async def current_url(self) -> str:
        return "http://localhost:5173/"

    async def element_text(self, selector: str, index: int = 0) -> str:
        return "Buy"


@pytest.fixture
def page() -> FakePage:
    return FakePage()


def test_page_tools_never_mutate() -> None:
    assert page_catalog().mutating_names() == frozenset()
    assert isinstance(FakePage(), PageController)


@pytest.mark.asyncio
async def test_actions_are_forwarded(page, context) -> None:
    executor = PageToolExecutor(page)

    assert await executor.execute("read_page", {}, context) == "<body><button>Buy</button></body>"
    assert await executor.execute("find_elements", {"selector": "button"}, context) == [{"tag": "button", "text": "Buy"}]
    await executor.execute("click_element", {"selector": "button", "index": 1}, context)
    await executor.execute("type_text", {"selector": "input", "text": "hi", "clear_first": False}, context)
    await executor.execute("scroll_page", {"direction": "down"}, context)

    assert page.actions == [
        ("click", "button", 1),
        ("type", "input", "hi", 0, False),
        ("scroll", "down", 400),
    ]
    assert await executor.execute("get_current_url", {}, context) == "http://localhost:5173/"


@pytest.mark.asyncio
async def test_invalid_arguments(page, context) -> None:
    executor = PageToolExecutor(page)

    with pytest.raises(InvalidParameterError):
        await executor.execute("click_element", {"selector": "a", "index": -1}, context)
    with pytest.raises(InvalidParameterError):
        await executor.execute("scroll_page", {"direction": "sideways"}, context)


@pytest.mark.asyncio
async def test_without_page_is_unavailable(context) -> None:
    with pytest.raises(UnavailableError):
        await PageToolExecutor().execute("read_page", {}, context)


@pytest.mark.asyncio
async def test_wait_is_capped(context, monkeypatch) -> None:
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr("fishwallet.ai.tools.page.asyncio.sleep", fake_sleep)

    message = await PageToolExecutor().execute("wait", {"ms": 60_000}, context)

    assert message == f"Waited {MAX_WAIT_MS}ms"
    assert slept == [MAX_WAIT_MS / 1000]
