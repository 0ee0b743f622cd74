"""Project file tools for the app-builder assistant."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ...services.storage import FileStore, RecordExists, RecordNotFound, StorageError
from ...utils.lines import number_lines
from ..orchestration.types import RequestContext
from .base import FamilyExecutorBase, require_int, require_str
from .errors import ConflictError, InvalidParameterError, NotFoundError
from .registry import ParameterSchema, ToolCatalog, ToolFamily, ToolSchema

__all__ = ["FILE_TOOLS", "FileToolExecutor", "file_catalog"]

LOGGER = logging.getLogger(__name__)

_PATH = ParameterSchema("file_path", "string", "Path relative to the project root, e.g. 'components/Button.tsx'", required=True)
_START = ParameterSchema("start_line", "integer", "First line to modify (1-indexed)", required=True, minimum=1)
_END = ParameterSchema("end_line", "integer", "Last line to modify (inclusive)", required=True, minimum=1)


def _files(name: str, description: str, *params: ParameterSchema, mutates: bool = True) -> ToolSchema:
    return ToolSchema(name=name, description=description, parameters=params, family=ToolFamily.FILES, mutates=mutates)


FILE_TOOLS: tuple[ToolSchema, ...] = (
    _files(
        "create_file",
        "Create a .tsx or .ts file. The first .tsx file becomes the preview entry file unless told otherwise.",
        _PATH,
        ParameterSchema("content", "string", "File content; TSX files default-export a React component", required=True),
        ParameterSchema("is_entry_file", "boolean", "Render this file in the live preview"),
    ),
    _files("read_file", "Read a file with line numbers.", _PATH, mutates=False),
    _files(
        "update_file",
        "Replace the entire content of an existing file.",
        _PATH,
        ParameterSchema("content", "string", "New file content", required=True),
    ),
    _files(
        "modify_file_lines",
        "Replace a 1-indexed inclusive line range in a file.",
        _PATH,
        _START,
        _END,
        ParameterSchema("new_content", "string", "Replacement text", required=True),
    ),
    _files("delete_file", "Delete a file from the project.", _PATH),
    _files("list_files", "List project files and show which one is the entry file.", mutates=False),
    _files("set_entry_file", "Choose the file rendered by the live preview.", _PATH),
)


def file_catalog() -> ToolCatalog:
    return ToolCatalog(FILE_TOOLS)


class FileToolExecutor(FamilyExecutorBase):
    """Runs file tools against a :class:`FileStore`."""

    family_name = ToolFamily.FILES.value

    def __init__(self, store: FileStore) -> None:
        super().__init__()
        self._store = store
        self.register("create_file", self._create)
        self.register("read_file", self._read)
        self.register("update_file", self._update)
        self.register("modify_file_lines", self._modify)
        self.register("delete_file", self._delete)
        self.register("list_files", self._list)
        self.register("set_entry_file", self._set_entry)

    def _create(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        path = require_str(arguments, "file_path")
        content = arguments.get("content")
        if not isinstance(content, str):
            raise InvalidParameterError(message="'content' is required and must be a string")
        if self._store.get_file(context.idea_id, path) is not None:
            raise ConflictError(message=f"File already exists: {path}", suggestion="Use update_file to modify it")
        requested = arguments.get("is_entry_file")
        is_entry = requested is True or (
            requested is None and self._store.get_entry_file(context.idea_id) is None and path.endswith(".tsx")
        )
        record = _guard(lambda: self._store.create_file(context.idea_id, path, content, is_entry_file=is_entry))
        return {
            "message": f"File created: {path}",
            "file_path": record.file_path,
            "file_type": record.file_type,
            "is_entry_file": record.is_entry_file,
            "line_count": record.line_count,
        }

    def _read(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        path = require_str(arguments, "file_path")
        record = self._store.get_file(context.idea_id, path)
        if record is None:
            raise NotFoundError(message=f"File not found: {path}", suggestion="Use list_files to see available files")
        return {
            "file_path": record.file_path,
            "file_type": record.file_type,
            "is_entry_file": record.is_entry_file,
            "line_count": record.line_count,
            "content": number_lines(record.content, width=4),
        }

    def _update(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        path = require_str(arguments, "file_path")
        content = arguments.get("content")
        if not isinstance(content, str):
            raise InvalidParameterError(message="'content' is required and must be a string")
        record = _guard(lambda: self._store.update_file(context.idea_id, path, content))
        return {"message": f"File updated: {path}", "file_path": record.file_path, "line_count": record.line_count}

    def _modify(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        path = require_str(arguments, "file_path")
        start = require_int(arguments, "start_line")
        end = require_int(arguments, "end_line")
        new_content = arguments.get("new_content")
        if not isinstance(new_content, str):
            raise InvalidParameterError(message="'new_content' is required and must be a string")
        record = _guard(lambda: self._store.modify_file_lines(context.idea_id, path, start, end, new_content))
        return {
            "message": f"Lines {start}-{end} modified in {path}",
            "file_path": record.file_path,
            "lines_removed": end - start + 1,
            "lines_added": len(new_content.split("\n")),
            "new_line_count": record.line_count,
        }

    def _delete(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        path = require_str(arguments, "file_path")
        _guard(lambda: self._store.delete_file(context.idea_id, path))
        return {"message": f"File deleted: {path}"}

    def _list(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        records = self._store.list_files(context.idea_id)
        if not records:
            return {"message": "No files in project yet.", "files": []}
        return {
            "count": len(records),
            "files": [
                {
                    "file_path": record.file_path,
                    "file_type": record.file_type,
                    "is_entry_file": record.is_entry_file,
                    "line_count": record.line_count,
                }
                for record in records
            ],
        }

    def _set_entry(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        path = require_str(arguments, "file_path")
        record = _guard(lambda: self._store.set_entry_file(context.idea_id, path))
        return {"message": f"Entry file set to: {path}", "file_path": record.file_path}


def _guard(operation):
    """Run a storage call, translating storage errors into tool errors."""
    try:
        return operation()
    except RecordNotFound as exc:
        raise NotFoundError(message=str(exc)) from exc
    except RecordExists as exc:
        raise ConflictError(message=str(exc)) from exc
    except StorageError as exc:
        raise InvalidParameterError(message=str(exc)) from exc
