"""Research tools: web search, notes, proposals and the idea synthesis."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ...services.storage import IdeaStore
from ...services.web_search import PageContent, SearchHit, WebSearchError
from ...utils import lines as line_utils
from ..orchestration.types import RequestContext
from .base import FamilyExecutorBase, require_int, require_str
from .errors import InvalidParameterError, NotFoundError, UnavailableError
from .registry import ParameterSchema, ToolCatalog, ToolFamily, ToolSchema

__all__ = [
    "SEARCH_TOOLS",
    "NOTE_TOOLS",
    "SYNTHESIS_TOOLS",
    "NOTE_CATEGORIES",
    "SEARCH_TOOL_NAMES",
    "SearchBackend",
    "ResearchToolExecutor",
    "search_catalog",
    "note_catalog",
    "synthesis_catalog",
    "search_hits_from",
]

LOGGER = logging.getLogger(__name__)

NOTE_CATEGORIES = ("research", "decision", "recommendation", "insight", "warning", "todo")
SEARCH_TOOL_NAMES = frozenset({"firecrawl_search"})
_PREVIEW_CHARS = 500


@runtime_checkable
class SearchBackend(Protocol):
    async def search(self, query: str, *, count: int = 5) -> list[SearchHit]: ...

    async def fetch_page(self, url: str, *, main_only: bool = True) -> PageContent: ...

    async def map_site(self, url: str, *, search: str | None = None, limit: int = 50) -> list[str]: ...


def _research(name: str, description: str, *params: ParameterSchema, mutates: bool = False) -> ToolSchema:
    return ToolSchema(name=name, description=description, parameters=params, family=ToolFamily.RESEARCH, mutates=mutates)


_START = ParameterSchema("start_line", "integer", "First line (1-indexed)", required=True, minimum=1)
_END = ParameterSchema("end_line", "integer", "Last line (inclusive)", required=True, minimum=1)

SEARCH_TOOLS: tuple[ToolSchema, ...] = (
    _research(
        "firecrawl_search",
        "Search the web for documentation, APIs, pricing or any other information.",
        ParameterSchema("query", "string", "Search query", required=True),
        ParameterSchema("limit", "integer", "Maximum results (default 5, max 10)", minimum=1, maximum=10),
        ParameterSchema("scrape_content", "boolean", "Also fetch each result's page text (slower)"),
    ),
    _research(
        "firecrawl_scrape",
        "Fetch one URL and return its readable text.",
        ParameterSchema("url", "string", "URL to fetch", required=True),
        ParameterSchema("only_main_content", "boolean", "Skip navigation, headers and footers (default true)"),
    ),
    _research(
        "firecrawl_map",
        "List the links found on a site's page, optionally filtered by a search term.",
        ParameterSchema("url", "string", "Base URL", required=True),
        ParameterSchema("search", "string", "Only return URLs containing this term"),
        ParameterSchema("limit", "integer", "Maximum URLs (default 50)", minimum=1),
    ),
)

NOTE_TOOLS: tuple[ToolSchema, ...] = (
    _research(
        "propose_note",
        "Propose a short note for the user to approve. Only use when the user asks to save something.",
        ParameterSchema("title", "string", "A quick label", required=True),
        ParameterSchema("content", "string", "One or two plain sentences", required=True),
        ParameterSchema("category", "string", "Note category", required=True, enum=NOTE_CATEGORIES),
    ),
    _research("read_notes", "Read every voice note recorded for the current idea."),
)

SYNTHESIS_TOOLS: tuple[ToolSchema, ...] = (
    _research(
        "update_synthesis",
        "Replace the whole synthesis document.",
        ParameterSchema("content", "string", "New synthesis content", required=True),
        mutates=True,
    ),
    _research(
        "modify_synthesis_lines",
        "Replace a 1-indexed inclusive line range of the synthesis.",
        _START,
        _END,
        ParameterSchema("new_content", "string", "Replacement text", required=True),
        mutates=True,
    ),
    _research(
        "add_to_synthesis",
        "Insert content after a line of the synthesis (0 inserts at the top).",
        ParameterSchema("after_line", "integer", "Insert after this line", required=True, minimum=0),
        ParameterSchema("content", "string", "Content to add", required=True),
        mutates=True,
    ),
    _research(
        "remove_from_synthesis",
        "Remove a 1-indexed inclusive line range from the synthesis.",
        _START,
        _END,
        mutates=True,
    ),
)


def search_catalog() -> ToolCatalog:
    return ToolCatalog(SEARCH_TOOLS)


def note_catalog() -> ToolCatalog:
    return ToolCatalog(NOTE_TOOLS)


def synthesis_catalog() -> ToolCatalog:
    return ToolCatalog(SYNTHESIS_TOOLS)


class ResearchToolExecutor(FamilyExecutorBase):
    """Runs search, note and synthesis tools.

    Args:
        store: Idea store holding notes and the synthesis text.
        search: Web backend; search tools fail as unavailable without one.
    """

    family_name = ToolFamily.RESEARCH.value

    def __init__(self, store: IdeaStore, search: SearchBackend | None = None) -> None:
        super().__init__()
        self._store = store
        self._search = search
        self.register("firecrawl_search", self._web_search)
        self.register("firecrawl_scrape", self._scrape)
        self.register("firecrawl_map", self._map)
        self.register("propose_note", self._propose_note)
        self.register("read_notes", self._read_notes)
        self.register("update_synthesis", self._update_synthesis)
        self.register("modify_synthesis_lines", self._modify_synthesis)
        self.register("add_to_synthesis", self._add_to_synthesis)
        self.register("remove_from_synthesis", self._remove_from_synthesis)

    # ------------------------------------------------------------------
    # Web
    # ------------------------------------------------------------------
    def _backend(self) -> SearchBackend:
        if self._search is None:
            raise UnavailableError(message="Web search is not configured", suggestion="Set search_api_key in settings")
        return self._search

    async def _web_search(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        query = require_str(arguments, "query")
        limit = min(int(arguments.get("limit") or 5), 10)
        backend = self._backend()
        try:
            hits = await backend.search(query, count=limit)
        except WebSearchError as exc:
            raise UnavailableError(message=str(exc)) from exc
        results = [hit.to_dict() for hit in hits]
        if arguments.get("scrape_content") is True:
            for result in results:
                try:
                    page = await backend.fetch_page(result["url"])
                except WebSearchError as exc:
                    LOGGER.debug("Skipping page text for %s: %s", result["url"], exc)
                    continue
                result["markdown"] = page.text
        return {
            "query": query,
            "result_count": len(results),
            "results": results,
            "message": f'Found {len(results)} results for "{query}"',
        }

    async def _scrape(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        url = require_str(arguments, "url")
        main_only = arguments.get("only_main_content") is not False
        try:
            page = await self._backend().fetch_page(url, main_only=main_only)
        except WebSearchError as exc:
            raise UnavailableError(message=str(exc)) from exc
        return {"url": page.url, "title": page.title, "markdown": page.text, "message": f"Successfully scraped {url}"}

    async def _map(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        url = require_str(arguments, "url")
        search = arguments.get("search") or None
        limit = int(arguments.get("limit") or 50)
        try:
            urls = await self._backend().map_site(url, search=search, limit=limit)
        except WebSearchError as exc:
            raise UnavailableError(message=str(exc)) from exc
        matching = f' matching "{search}"' if search else ""
        return {
            "base_url": url,
            "search_filter": search,
            "url_count": len(urls),
            "urls": urls,
            "message": f"Found {len(urls)} URLs on {url}{matching}",
        }

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------
    def _propose_note(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        title = require_str(arguments, "title")
        content = require_str(arguments, "content")
        category = require_str(arguments, "category")
        if category not in NOTE_CATEGORIES:
            raise InvalidParameterError(message=f"category must be one of: {', '.join(NOTE_CATEGORIES)}")
        proposal = {
            "id": f"proposal-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
            "title": title,
            "content": content,
            "category": category,
            "idea_id": context.idea_id,
        }
        return {
            "type": "note_proposal",
            "proposal": proposal,
            "message": f'Proposed note: "{title}". Waiting for user approval.',
        }

    def _read_notes(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        notes = self._store.get_notes(context.idea_id)
        if not notes:
            return {"message": "No notes found for this idea.", "notes": []}
        return {
            "count": len(notes),
            "notes": [
                {
                    "index": index,
                    "content": note.content,
                    "timestamp": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(note.created_at)),
                    "duration_ms": note.duration_ms,
                }
                for index, note in enumerate(notes, start=1)
            ],
        }

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------
    def _current_synthesis(self, idea_id: str) -> str:
        idea = self._store.get_idea(idea_id)
        if idea is None or not idea.synthesis_content:
            raise NotFoundError(message="No synthesis exists to modify.", suggestion="Use update_synthesis first")
        return idea.synthesis_content

    def _require_idea(self, idea_id: str) -> None:
        if self._store.get_idea(idea_id) is None:
            raise NotFoundError(message=f"Idea {idea_id} not found")

    def _update_synthesis(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        content = require_str(arguments, "content")
        self._require_idea(context.idea_id)
        self._store.update_synthesis(context.idea_id, content)
        numbered = "\n".join(f"{i}: {line}" for i, line in enumerate(content.split("\n"), start=1))
        preview = numbered[:_PREVIEW_CHARS] + ("..." if len(numbered) > _PREVIEW_CHARS else "")
        return {"message": "Synthesis updated successfully.", "line_count": len(content.split("\n")), "preview": preview}

    def _modify_synthesis(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        start = require_int(arguments, "start_line")
        end = require_int(arguments, "end_line")
        new_content = arguments.get("new_content")
        if not isinstance(new_content, str):
            raise InvalidParameterError(message="'new_content' is required and must be a string")
        updated = _edit(line_utils.replace_lines, self._current_synthesis(context.idea_id), start, end, new_content)
        self._store.update_synthesis(context.idea_id, updated)
        return {
            "message": f"Lines {start}-{end} modified successfully.",
            "lines_removed": end - start + 1,
            "lines_added": len(new_content.split("\n")),
            "new_line_count": len(updated.split("\n")),
        }

    def _add_to_synthesis(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        after_line = require_int(arguments, "after_line")
        content = require_str(arguments, "content")
        self._require_idea(context.idea_id)
        idea = self._store.get_idea(context.idea_id)
        if idea is None or not idea.synthesis_content:
            self._store.update_synthesis(context.idea_id, content)
            return {"message": "Created new synthesis with the provided content.", "line_count": len(content.split("\n"))}
        updated = _edit(line_utils.insert_lines, idea.synthesis_content, after_line, content)
        self._store.update_synthesis(context.idea_id, updated)
        added = len(content.split("\n"))
        return {
            "message": f"Added {added} lines after line {after_line}.",
            "new_line_count": len(updated.split("\n")),
        }

    def _remove_from_synthesis(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        start = require_int(arguments, "start_line")
        end = require_int(arguments, "end_line")
        updated = _edit(line_utils.remove_lines, self._current_synthesis(context.idea_id), start, end)
        self._store.update_synthesis(context.idea_id, updated)
        return {
            "message": f"Removed lines {start}-{end} ({end - start + 1} lines).",
            "new_line_count": len(updated.split("\n")),
        }


def _edit(operation, content: str, *args: Any) -> str:
    try:
        return operation(content, *args)
    except ValueError as exc:
        raise InvalidParameterError(message=str(exc)) from exc


def search_hits_from(data: Any) -> Sequence[Mapping[str, Any]]:
    """Pull normalized ``{rank, title, url, snippet}`` rows out of a search payload."""

    if not isinstance(data, Mapping):
        return ()
    rows = data.get("results") or ()
    return tuple(
        {key: row.get(key) for key in ("rank", "title", "url", "snippet")}
        for row in rows
        if isinstance(row, Mapping)
    )
