"""Tool families exposed to the model."""

from . import errors, files, graph, page, registry, research

__all__ = [
    "errors",
    "files",
    "graph",
    "page",
    "registry",
    "research",
]
