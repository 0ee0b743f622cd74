"""Tests for the Brave search client and page fetching."""

from __future__ import annotations

import httpx
import pytest

from fishwallet.services.web_search import BRAVE_SEARCH_URL, BraveSearchClient, WebSearchError

_PAGE = """
<html>
  <head><title>Stripe Pricing</title><style>body {}</style></head>
  <body>
    <nav><a href="/login">Log in</a></nav>
    <main>
      <h1>Pricing</h1>
      <p>2.9% + 30c per charge</p>
      <a href="/docs/api#intro">API docs</a>
      <a href="https://elsewhere.com/x">Partner</a>
      <a href="/pricing/enterprise">Enterprise</a>
    </main>
    <footer>Copyright</footer>
  </body>
</html>
"""


def _client(handler, api_key: str | None = "brave-key") -> BraveSearchClient:
    return BraveSearchClient(api_key, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_search_parses_results() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "web": {
                    "results": [
                        {"url": "https://stripe.com/pricing", "title": "Pricing", "description": "Fees"},
                        {"title": "no url"},
                        {"url": "https://stripe.com/docs"},
                    ]
                }
            },
        )

    hits = await _client(handler).search("stripe fees", count=50)

    assert [(hit.rank, hit.title, hit.url, hit.snippet) for hit in hits] == [
        (1, "Pricing", "https://stripe.com/pricing", "Fees"),
        (3, "No title", "https://stripe.com/docs", ""),
    ]
    request = seen[0]
    assert str(request.url).startswith(BRAVE_SEARCH_URL)
    assert request.url.params["count"] == "20"
    assert request.headers["X-Subscription-Token"] == "brave-key"


@pytest.mark.asyncio
async def test_search_requires_api_key() -> None:
    client = _client(lambda request: httpx.Response(200, json={}), api_key="  ")

    assert client.configured is False
    with pytest.raises(WebSearchError, match="not configured"):
        await client.search("q")


@pytest.mark.asyncio
async def test_search_http_error() -> None:
    client = _client(lambda request: httpx.Response(429, text="rate limited"))

    with pytest.raises(WebSearchError, match="429 rate limited"):
        await client.search("q")


@pytest.mark.asyncio
async def test_search_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(WebSearchError, match="request failed"):
        await _client(handler).search("q")


@pytest.mark.asyncio
async def test_fetch_page_extracts_main_text() -> None:
    client = _client(lambda request: httpx.Response(200, text=_PAGE))

    page = await client.fetch_page("https://stripe.com/pricing")

    assert page.title == "Stripe Pricing"
    assert page.text.splitlines() == ["Pricing", "2.9% + 30c per charge", "API docs", "Partner", "Enterprise"]
    assert "https://stripe.com/docs/api#intro" in page.links


@pytest.mark.asyncio
async def test_fetch_page_keeps_navigation_when_asked() -> None:
    client = _client(lambda request: httpx.Response(200, text=_PAGE))

    page = await client.fetch_page("https://stripe.com/pricing", main_only=False)

    assert "Log in" in page.text
    assert "Copyright" in page.text


@pytest.mark.asyncio
async def test_fetch_page_failure() -> None:
    client = _client(lambda request: httpx.Response(404, text="missing"))

    with pytest.raises(WebSearchError, match="Failed to fetch"):
        await client.fetch_page("https://stripe.com/nope")


@pytest.mark.asyncio
async def test_map_site_filters_same_host_links() -> None:
    client = _client(lambda request: httpx.Response(200, text=_PAGE))

    all_links = await client.map_site("https://stripe.com/pricing")
    filtered = await client.map_site("https://stripe.com/pricing", search="PRICING", limit=5)

    assert all_links == [
        "https://stripe.com/login",
        "https://stripe.com/docs/api",
        "https://stripe.com/pricing/enterprise",
    ]
    assert filtered == ["https://stripe.com/pricing/enterprise"]
