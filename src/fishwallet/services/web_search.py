"""Web research backend: Brave Search plus plain page fetching."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Mapping
from urllib.parse import urljoin, urlparse

import httpx

__all__ = ["SearchHit", "PageContent", "WebSearchError", "BraveSearchClient"]

LOGGER = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
MAX_PAGE_CHARS = 40_000
_SKIP_TAGS = {"script", "style", "noscript", "svg", "head"}
_MAIN_SKIP_TAGS = {"nav", "header", "footer", "aside"}


class WebSearchError(RuntimeError):
    """Raised when the search backend is unconfigured or returns an error."""


@dataclass(slots=True, frozen=True)
class SearchHit:
    rank: int
    title: str
    url: str
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, "title": self.title, "url": self.url, "snippet": self.snippet}


@dataclass(slots=True, frozen=True)
class PageContent:
    url: str
    title: str
    text: str
    links: tuple[str, ...] = ()


class _PageParser(HTMLParser):
    def __init__(self, *, main_only: bool) -> None:
        super().__init__(convert_charrefs=True)
        self._skip_tags = _SKIP_TAGS | (_MAIN_SKIP_TAGS if main_only else set())
        self._skip_depth = 0
        self._in_title = False
        self.title = ""
        self.parts: list[str] = []
        self.links: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "title":
            self._in_title = True
        if tag in self._skip_tags:
            self._skip_depth += 1
        if tag == "a":
            href = dict(attrs).get("href")
            if href:
                self.links.append(href)

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False
        if tag in self._skip_tags and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self.title += data
            return
        if self._skip_depth:
            return
        text = data.strip()
        if text:
            self.parts.append(text)


class BraveSearchClient:
    """Async client for the Brave Search API and simple page retrieval.

    Args:
        api_key: Brave subscription token. Searching without one raises
            :class:`WebSearchError`; page fetching still works.
        client: Optional preconfigured ``httpx.AsyncClient`` (tests inject a
            ``MockTransport``).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ) -> None:
        self._api_key = (api_key or "").strip() or None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    async def search(self, query: str, *, count: int = 5) -> list[SearchHit]:
        if not self._api_key:
            raise WebSearchError("Web search is not configured. Set search_api_key or FISHWALLET_SEARCH_API_KEY.")
        count = max(1, min(int(count), 20))
        LOGGER.info("Searching the web: %r (count=%d)", query, count)
        try:
            response = await self._client.get(
                BRAVE_SEARCH_URL,
                params={"q": query, "count": str(count), "safesearch": "moderate"},
                headers={"Accept": "application/json", "X-Subscription-Token": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise WebSearchError(f"Web search request failed: {exc}") from exc
        if response.status_code >= 400:
            LOGGER.error("Brave search error %s: %s", response.status_code, response.text[:200])
            raise WebSearchError(f"Web search failed: {response.status_code} {response.text[:200]}")
        hits = self._parse_results(response.json(), count)
        LOGGER.info("Search for %r returned %d result(s)", query, len(hits))
        return hits

    async def fetch_page(self, url: str, *, main_only: bool = True) -> PageContent:
        try:
            response = await self._client.get(url, headers={"Accept": "text/html,application/xhtml+xml"})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise WebSearchError(f"Failed to fetch {url}: {exc}") from exc
        parser = _PageParser(main_only=main_only)
        parser.feed(response.text)
        parser.close()
        text = "\n".join(parser.parts)
        if len(text) > MAX_PAGE_CHARS:
            text = text[:MAX_PAGE_CHARS] + "\n..."
        base = str(response.url)
        links = tuple(dict.fromkeys(urljoin(base, href) for href in parser.links))
        return PageContent(url=base, title=parser.title.strip(), text=text, links=links)

    async def map_site(self, url: str, *, search: str | None = None, limit: int = 50) -> list[str]:
        """Return same-host links found on ``url``, optionally filtered by ``search``."""
        page = await self.fetch_page(url, main_only=False)
        host = urlparse(page.url).netloc
        needle = (search or "").lower()
        found: list[str] = []
        for link in page.links:
            parsed = urlparse(link)
            if parsed.scheme not in ("http", "https") or parsed.netloc != host:
                continue
            if needle and needle not in link.lower():
                continue
            found.append(link.split("#", 1)[0])
            if len(found) >= limit:
                break
        return list(dict.fromkeys(found))

    @staticmethod
    def _parse_results(payload: Mapping[str, Any], count: int) -> list[SearchHit]:
        web = payload.get("web") or {}
        raw_results = web.get("results") or []
        hits: list[SearchHit] = []
        for index, item in enumerate(raw_results[:count], start=1):
            url = item.get("url")
            if not url:
                continue
            hits.append(
                SearchHit(
                    rank=index,
                    title=item.get("title") or "No title",
                    url=url,
                    snippet=item.get("description") or "",
                )
            )
        return hits

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
