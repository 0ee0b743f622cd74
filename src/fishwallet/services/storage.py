"""In-memory reference implementation of the storage collaborator.

The tool executors and the snapshot trigger talk to storage only through the
protocols declared here, so a database-backed store can replace
:class:`InMemoryStorage` without touching the orchestration layer. Every
method is synchronous and completes without yielding, which serializes
conflicting writes from concurrently executing tool calls.
"""

from __future__ import annotations

import copy
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from ..utils import lines as line_utils

__all__ = [
    "StorageError",
    "RecordNotFound",
    "RecordExists",
    "Idea",
    "Note",
    "DependencyNode",
    "Connection",
    "ProjectFile",
    "Snapshot",
    "IdeaStore",
    "GraphStore",
    "FileStore",
    "VersioningStore",
    "WorkspaceStore",
    "InMemoryStorage",
    "ALLOWED_FILE_TYPES",
]

LOGGER = logging.getLogger(__name__)

ALLOWED_FILE_TYPES = ("tsx", "ts", "css")
MAX_FILE_SIZE = 1024 * 1024
_INVALID_PATH_PATTERNS = (
    re.compile(r"\.\."),
    re.compile(r"^/"),
    re.compile(r"^[A-Za-z]:\\"),
    re.compile(r"[\x00-\x1f]"),
)


class StorageError(Exception):
    """Base error for storage failures."""


class RecordNotFound(StorageError):
    pass


class RecordExists(StorageError):
    pass


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class Idea:
    id: str
    title: str
    synthesis_content: str | None = None
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class Note:
    id: str
    idea_id: str
    content: str
    created_at: float = field(default_factory=time.time)
    duration_ms: int | None = None


@dataclass(slots=True)
class DependencyNode:
    id: str
    idea_id: str
    name: str
    provider: str
    description: str
    pricing: dict[str, Any] | None = None
    position_x: float = 0.0
    position_y: float = 0.0
    color: str = "#3b82f6"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "description": self.description,
            "pricing": copy.deepcopy(self.pricing),
            "position": {"x": self.position_x, "y": self.position_y},
            "color": self.color,
        }


@dataclass(slots=True)
class Connection:
    id: str
    idea_id: str
    from_node_id: str
    to_node_id: str
    label: str | None = None
    details: dict[str, Any] | None = None


@dataclass(slots=True)
class ProjectFile:
    idea_id: str
    file_path: str
    content: str
    file_type: str
    is_entry_file: bool = False
    updated_at: float = field(default_factory=time.time)

    @property
    def line_count(self) -> int:
        return len(self.content.split("\n"))


@dataclass(slots=True, frozen=True)
class Snapshot:
    id: str
    idea_id: str
    version_number: int
    tools_used: tuple[str, ...]
    synthesis_content: str | None
    nodes: tuple[Mapping[str, Any], ...]
    connections: tuple[Mapping[str, Any], ...]
    files: tuple[Mapping[str, Any], ...]
    created_at: float = field(default_factory=time.time)


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class IdeaStore(Protocol):
    def get_idea(self, idea_id: str) -> Idea | None: ...

    def update_synthesis(self, idea_id: str, content: str) -> Idea: ...

    def get_notes(self, idea_id: str) -> list[Note]: ...


@runtime_checkable
class GraphStore(Protocol):
    def create_node(self, idea_id: str, *, name: str, provider: str, description: str, **extra: Any) -> DependencyNode: ...

    def get_node(self, node_id: str) -> DependencyNode | None: ...

    def update_node(self, node_id: str, **changes: Any) -> DependencyNode: ...

    def delete_node(self, node_id: str) -> None: ...

    def list_nodes(self, idea_id: str) -> list[DependencyNode]: ...

    def create_connection(
        self, idea_id: str, from_node_id: str, to_node_id: str, *, label: str | None = None, details: Mapping[str, Any] | None = None
    ) -> Connection: ...

    def delete_connection_between(self, from_node_id: str, to_node_id: str) -> int: ...

    def list_connections(self, idea_id: str) -> list[Connection]: ...


@runtime_checkable
class FileStore(Protocol):
    def get_file(self, idea_id: str, file_path: str) -> ProjectFile | None: ...

    def create_file(self, idea_id: str, file_path: str, content: str, *, is_entry_file: bool = False) -> ProjectFile: ...

    def update_file(self, idea_id: str, file_path: str, content: str) -> ProjectFile: ...

    def modify_file_lines(self, idea_id: str, file_path: str, start_line: int, end_line: int, new_content: str) -> ProjectFile: ...

    def delete_file(self, idea_id: str, file_path: str) -> None: ...

    def list_files(self, idea_id: str) -> list[ProjectFile]: ...

    def get_entry_file(self, idea_id: str) -> ProjectFile | None: ...

    def set_entry_file(self, idea_id: str, file_path: str) -> ProjectFile: ...


@runtime_checkable
class VersioningStore(Protocol):
    def create_snapshot(self, idea_id: str, tools_used: Sequence[str]) -> Snapshot: ...


@runtime_checkable
class WorkspaceStore(IdeaStore, GraphStore, FileStore, VersioningStore, Protocol):
    """Everything the assistant features read and write for one idea."""


# -----------------------------------------------------------------------------
# In-memory implementation
# -----------------------------------------------------------------------------


def _new_id() -> str:
    return uuid.uuid4().hex


def _file_type(file_path: str) -> str:
    extension = file_path.rsplit(".", 1)[-1].lower() if "." in file_path else ""
    if extension not in ALLOWED_FILE_TYPES:
        raise StorageError(f"Invalid file type. Allowed types: {', '.join(ALLOWED_FILE_TYPES)}")
    return extension


def _validate_path(file_path: str) -> None:
    if not file_path:
        raise StorageError("File path is required")
    if len(file_path) > 255:
        raise StorageError("File path exceeds maximum length of 255 characters")
    for pattern in _INVALID_PATH_PATTERNS:
        if pattern.search(file_path):
            raise StorageError(f"Invalid file path: {file_path}")


def _validate_content(content: str) -> None:
    if len(content.encode("utf-8")) > MAX_FILE_SIZE:
        raise StorageError(f"File content exceeds maximum size of {MAX_FILE_SIZE} bytes")


class InMemoryStorage:
    """Process-local store for ideas, notes, graph nodes, files and snapshots."""

    def __init__(self) -> None:
        self._ideas: dict[str, Idea] = {}
        self._notes: dict[str, list[Note]] = {}
        self._nodes: dict[str, DependencyNode] = {}
        self._connections: dict[str, Connection] = {}
        self._files: dict[str, dict[str, ProjectFile]] = {}
        self._snapshots: dict[str, list[Snapshot]] = {}

    # ------------------------------------------------------------------
    # Ideas and notes
    # ------------------------------------------------------------------
    def create_idea(self, title: str, *, idea_id: str | None = None, synthesis: str | None = None) -> Idea:
        idea = Idea(id=idea_id or _new_id(), title=title, synthesis_content=synthesis)
        if idea.id in self._ideas:
            raise RecordExists(f"Idea {idea.id} already exists")
        self._ideas[idea.id] = idea
        return idea

    def ensure_idea(self, idea_id: str, title: str = "Untitled idea") -> Idea:
        return self._ideas.get(idea_id) or self.create_idea(title, idea_id=idea_id)

    def get_idea(self, idea_id: str) -> Idea | None:
        return self._ideas.get(idea_id)

    def update_synthesis(self, idea_id: str, content: str) -> Idea:
        idea = self._require_idea(idea_id)
        idea.synthesis_content = content
        return idea

    def add_note(self, idea_id: str, content: str, *, duration_ms: int | None = None) -> Note:
        self._require_idea(idea_id)
        note = Note(id=_new_id(), idea_id=idea_id, content=content, duration_ms=duration_ms)
        self._notes.setdefault(idea_id, []).append(note)
        return note

    def get_notes(self, idea_id: str) -> list[Note]:
        return list(self._notes.get(idea_id, ()))

    def _require_idea(self, idea_id: str) -> Idea:
        idea = self._ideas.get(idea_id)
        if idea is None:
            raise RecordNotFound(f"Idea {idea_id} not found")
        return idea

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------
    def create_node(
        self,
        idea_id: str,
        *,
        name: str,
        provider: str,
        description: str,
        pricing: Mapping[str, Any] | None = None,
        color: str | None = None,
        position_x: float = 0.0,
        position_y: float = 0.0,
    ) -> DependencyNode:
        node = DependencyNode(
            id=_new_id(),
            idea_id=idea_id,
            name=name,
            provider=provider,
            description=description,
            pricing=dict(pricing) if pricing else None,
            position_x=position_x,
            position_y=position_y,
            color=color or "#3b82f6",
        )
        self._nodes[node.id] = node
        return node

    def get_node(self, node_id: str) -> DependencyNode | None:
        return self._nodes.get(node_id)

    def update_node(self, node_id: str, **changes: Any) -> DependencyNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise RecordNotFound(f"Node {node_id} not found")
        for key, value in changes.items():
            if value is None:
                continue
            if not hasattr(node, key) or key in {"id", "idea_id"}:
                raise StorageError(f"Unknown node field: {key}")
            setattr(node, key, dict(value) if key == "pricing" else value)
        return node

    def delete_node(self, node_id: str) -> None:
        if self._nodes.pop(node_id, None) is None:
            raise RecordNotFound(f"Node {node_id} not found")
        for connection_id in [
            cid
            for cid, conn in self._connections.items()
            if node_id in (conn.from_node_id, conn.to_node_id)
        ]:
            del self._connections[connection_id]

    def list_nodes(self, idea_id: str) -> list[DependencyNode]:
        return [node for node in self._nodes.values() if node.idea_id == idea_id]

    def create_connection(
        self,
        idea_id: str,
        from_node_id: str,
        to_node_id: str,
        *,
        label: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> Connection:
        for node_id in (from_node_id, to_node_id):
            if node_id not in self._nodes:
                raise RecordNotFound(f"Node {node_id} not found")
        connection = Connection(
            id=_new_id(),
            idea_id=idea_id,
            from_node_id=from_node_id,
            to_node_id=to_node_id,
            label=label,
            details=dict(details) if details else None,
        )
        self._connections[connection.id] = connection
        return connection

    def delete_connection_between(self, from_node_id: str, to_node_id: str) -> int:
        doomed = [
            cid
            for cid, conn in self._connections.items()
            if conn.from_node_id == from_node_id and conn.to_node_id == to_node_id
        ]
        for cid in doomed:
            del self._connections[cid]
        return len(doomed)

    def list_connections(self, idea_id: str) -> list[Connection]:
        return [conn for conn in self._connections.values() if conn.idea_id == idea_id]

    # ------------------------------------------------------------------
    # Project files
    # ------------------------------------------------------------------
    def get_file(self, idea_id: str, file_path: str) -> ProjectFile | None:
        return self._files.get(idea_id, {}).get(file_path)

    def create_file(self, idea_id: str, file_path: str, content: str, *, is_entry_file: bool = False) -> ProjectFile:
        _validate_path(file_path)
        _validate_content(content)
        file_type = _file_type(file_path)
        files = self._files.setdefault(idea_id, {})
        if file_path in files:
            raise RecordExists(f"File already exists: {file_path}")
        if is_entry_file:
            self._clear_entry(idea_id)
        record = ProjectFile(
            idea_id=idea_id,
            file_path=file_path,
            content=content,
            file_type=file_type,
            is_entry_file=is_entry_file,
        )
        files[file_path] = record
        return record

    def update_file(self, idea_id: str, file_path: str, content: str) -> ProjectFile:
        _validate_content(content)
        record = self._require_file(idea_id, file_path)
        record.content = content
        record.updated_at = time.time()
        return record

    def modify_file_lines(
        self, idea_id: str, file_path: str, start_line: int, end_line: int, new_content: str
    ) -> ProjectFile:
        record = self._require_file(idea_id, file_path)
        try:
            updated = line_utils.replace_lines(record.content, start_line, end_line, new_content)
        except ValueError as exc:
            raise StorageError(str(exc)) from exc
        return self.update_file(idea_id, file_path, updated)

    def delete_file(self, idea_id: str, file_path: str) -> None:
        self._require_file(idea_id, file_path)
        del self._files[idea_id][file_path]

    def list_files(self, idea_id: str) -> list[ProjectFile]:
        return sorted(self._files.get(idea_id, {}).values(), key=lambda item: item.file_path)

    def get_entry_file(self, idea_id: str) -> ProjectFile | None:
        for record in self._files.get(idea_id, {}).values():
            if record.is_entry_file:
                return record
        return None

    def set_entry_file(self, idea_id: str, file_path: str) -> ProjectFile:
        record = self._require_file(idea_id, file_path)
        self._clear_entry(idea_id)
        record.is_entry_file = True
        return record

    def _clear_entry(self, idea_id: str) -> None:
        for record in self._files.get(idea_id, {}).values():
            record.is_entry_file = False

    def _require_file(self, idea_id: str, file_path: str) -> ProjectFile:
        record = self.get_file(idea_id, file_path)
        if record is None:
            raise RecordNotFound(f"File not found: {file_path}")
        return record

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def latest_version(self, idea_id: str) -> int:
        snapshots = self._snapshots.get(idea_id)
        return snapshots[-1].version_number if snapshots else 0

    def create_snapshot(self, idea_id: str, tools_used: Iterable[str]) -> Snapshot:
        idea = self._require_idea(idea_id)
        snapshot = Snapshot(
            id=_new_id(),
            idea_id=idea_id,
            version_number=self.latest_version(idea_id) + 1,
            tools_used=tuple(tools_used),
            synthesis_content=idea.synthesis_content,
            nodes=tuple(node.to_dict() for node in self.list_nodes(idea_id)),
            connections=tuple(
                {
                    "id": conn.id,
                    "from_node_id": conn.from_node_id,
                    "to_node_id": conn.to_node_id,
                    "label": conn.label,
                    "details": copy.deepcopy(conn.details),
                }
                for conn in self.list_connections(idea_id)
            ),
            files=tuple(
                {"file_path": record.file_path, "content": record.content}
                for record in self.list_files(idea_id)
            ),
        )
        self._snapshots.setdefault(idea_id, []).append(snapshot)
        LOGGER.info(
            "Created snapshot v%s for idea %s (%d nodes, %d files)",
            snapshot.version_number,
            idea_id,
            len(snapshot.nodes),
            len(snapshot.files),
        )
        return snapshot

    def list_snapshots(self, idea_id: str) -> list[Snapshot]:
        return list(self._snapshots.get(idea_id, ()))
