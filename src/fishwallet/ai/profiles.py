"""Per-feature configuration of the shared round loop.

A :class:`FeatureProfile` names the tool catalog a feature offers, how its
system preamble is generated from current storage state, which auxiliary
events accompany tool execution, and which post-exchange hooks it opts into.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

from ..services.storage import WorkspaceStore
from ..utils.lines import number_lines
from .orchestration.tool_router import (
    AuxiliaryRules,
    FamilyExecutor,
    NoAuxiliaryEvents,
    StandardAuxiliaryRules,
)
from .tools.files import FileToolExecutor, file_catalog
from .tools.graph import GraphToolExecutor, graph_catalog
from .tools.page import PageController, PageToolExecutor, page_catalog
from .tools.registry import ToolCatalog, ToolFamily
from .tools.research import (
    SEARCH_TOOL_NAMES,
    ResearchToolExecutor,
    SearchBackend,
    note_catalog,
    search_catalog,
    synthesis_catalog,
)

__all__ = [
    "FeatureProfile",
    "PreambleBuilder",
    "graph_profile",
    "synthesis_profile",
    "voice_profile",
    "get_profile",
    "available_profiles",
    "build_executors",
]

LOGGER = logging.getLogger(__name__)

PreambleBuilder = Callable[[WorkspaceStore, str], str]


@dataclass(slots=True, frozen=True)
class FeatureProfile:
    """Everything that distinguishes one assistant feature from another.

    Attributes:
        name: Feature identifier, also recorded on the request context.
        catalog: Tools offered to the model.
        preamble: Builds the system preamble from storage for an idea.
        rules: Auxiliary events emitted around tool execution.
        mutating_tools: Tool names that trigger a snapshot; defaults to the
            catalog's mutating tools.
        snapshots: Whether the feature snapshots state after mutating exchanges.
        panel_error_repair: Whether preview errors trigger repair loops.
    """

    name: str
    catalog: ToolCatalog
    preamble: PreambleBuilder
    rules: AuxiliaryRules = field(default_factory=NoAuxiliaryEvents)
    mutating_tools: frozenset[str] | None = None
    snapshots: bool = True
    panel_error_repair: bool = False

    def snapshot_tools(self) -> frozenset[str]:
        if not self.snapshots:
            return frozenset()
        if self.mutating_tools is not None:
            return self.mutating_tools
        return self.catalog.mutating_names()

    def system_prompt(self, store: WorkspaceStore, idea_id: str) -> str:
        return self.preamble(store, idea_id)


# -----------------------------------------------------------------------------
# Preambles
# -----------------------------------------------------------------------------


def _idea_title(store: WorkspaceStore, idea_id: str) -> str:
    idea = store.get_idea(idea_id)
    return idea.title if idea is not None else "Untitled idea"


def graph_preamble(store: WorkspaceStore, idea_id: str) -> str:
    nodes = store.list_nodes(idea_id)
    if nodes:
        names = {node.id: node.name for node in nodes}
        node_lines = "\n".join(f"- {node.name} ({node.provider}) [ID: {node.id}]" for node in nodes)
        connections = store.list_connections(idea_id)
        edge_lines = "\n".join(
            f"- {names.get(conn.from_node_id, '?')} -> {names.get(conn.to_node_id, '?')}"
            + (f" ({conn.label})" if conn.label else "")
            for conn in connections
        ) or "No connections yet."
        state = (
            f"## Current Dependency Nodes\n{node_lines}\n\n## Current Connections\n{edge_lines}\n\n"
            "Use `read_dependency_nodes` for full details including pricing and licensing."
        )
    else:
        state = "No dependency nodes exist yet. Start by working out which APIs, libraries and services are needed."
    return f"""## Project: "{_idea_title(store, idea_id)}"

{state}

## Role

You help map the architecture behind an idea: the services, APIs, libraries and
data stores it needs and how data flows between them. Prefer small pieces with
clear interfaces, and describe what crosses each connection.

## Tools

- Research: `firecrawl_search`, `firecrawl_scrape`, `firecrawl_map`, `propose_note`, `read_notes`
- Graph: `create_dependency_node`, `update_dependency_node`, `delete_dependency_node`,
  `connect_dependency_nodes`, `disconnect_dependency_nodes`, `read_dependency_nodes`
- Create nodes first, then connect them by name.

## Rules

Do what was asked and nothing more, report what you did, and ask what comes next."""


def synthesis_preamble(store: WorkspaceStore, idea_id: str) -> str:
    idea = store.get_idea(idea_id)
    synthesis = idea.synthesis_content if idea is not None else None
    if synthesis:
        synthesis_state = (
            "## Current Synthesis (with line numbers)\n```\n"
            f"{number_lines(synthesis)}\n```\n\n"
            "Edit it with `update_synthesis`, `modify_synthesis_lines`, `add_to_synthesis` "
            "or `remove_from_synthesis`."
        )
    else:
        synthesis_state = "No synthesis exists yet. Use the notes to write a first one when asked."
    files = store.list_files(idea_id)
    if files:
        file_lines = "\n".join(
            f"- {record.file_path} ({record.file_type})"
            + (" [ENTRY FILE]" if record.is_entry_file else "")
            + f" - {record.line_count} lines"
            for record in files
        )
        file_state = f"## Current Project Files\n{file_lines}\n\nRead a file before modifying it."
    else:
        file_state = "No project files exist yet."
    return f"""## Idea: "{_idea_title(store, idea_id)}"

{synthesis_state}

{file_state}

## Role

You help someone turn an idea into something real: organizing it into a
synthesis, researching what it needs, and building a React/TypeScript preview.

## Tools

- Research: `firecrawl_search`, `firecrawl_scrape`, `firecrawl_map`
- Notes: `propose_note` (only when the user asks to save something), `read_notes`
- Synthesis: `update_synthesis`, `modify_synthesis_lines`, `add_to_synthesis`, `remove_from_synthesis`
- App builder: `create_file`, `read_file`, `update_file`, `modify_file_lines`, `delete_file`,
  `list_files`, `set_entry_file`. Use Tailwind CSS and default-export the entry component.

## Rules

Wait for an explicit request before synthesizing, building or researching.
Never invent IDs. Complete what was asked, share what you did, ask what's next."""


VOICE_PREAMBLE = """You are a voice-controlled navigation assistant for the app shown in the preview panel.

1. Read the page with `read_page` to see what is visible.
2. Locate elements with `find_elements` using precise CSS selectors.
3. Click, type, scroll or wait as the command requires, then read the page again to confirm.
4. Reply in one or two short sentences.

If you cannot find what was asked for, say so and describe what you see instead."""


def voice_preamble(store: WorkspaceStore, idea_id: str) -> str:
    return VOICE_PREAMBLE


# -----------------------------------------------------------------------------
# Profiles
# -----------------------------------------------------------------------------


def graph_profile() -> FeatureProfile:
    return FeatureProfile(
        name="graph",
        catalog=graph_catalog().merged(search_catalog(), note_catalog()),
        preamble=graph_preamble,
        rules=StandardAuxiliaryRules(search_tools=SEARCH_TOOL_NAMES),
    )


def synthesis_profile() -> FeatureProfile:
    return FeatureProfile(
        name="synthesis",
        catalog=synthesis_catalog().merged(note_catalog(), search_catalog(), file_catalog()),
        preamble=synthesis_preamble,
        rules=StandardAuxiliaryRules(search_tools=SEARCH_TOOL_NAMES),
        panel_error_repair=True,
    )


def voice_profile() -> FeatureProfile:
    return FeatureProfile(
        name="voice",
        catalog=page_catalog(),
        preamble=voice_preamble,
        snapshots=False,
    )


_PROFILES: Mapping[str, Callable[[], FeatureProfile]] = {
    "graph": graph_profile,
    "synthesis": synthesis_profile,
    "voice": voice_profile,
}


def available_profiles() -> tuple[str, ...]:
    return tuple(_PROFILES)


def get_profile(name: str) -> FeatureProfile:
    try:
        factory = _PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown feature '{name}'. Choose one of: {', '.join(_PROFILES)}") from None
    return factory()


def build_executors(
    store: WorkspaceStore,
    *,
    search: SearchBackend | None = None,
    page: PageController | None = None,
) -> dict[ToolFamily, FamilyExecutor]:
    """Create one executor per tool family over a shared store."""

    return {
        ToolFamily.GRAPH: GraphToolExecutor(store),
        ToolFamily.FILES: FileToolExecutor(store),
        ToolFamily.RESEARCH: ResearchToolExecutor(store, search=search),
        ToolFamily.OTHER: PageToolExecutor(page),
    }
