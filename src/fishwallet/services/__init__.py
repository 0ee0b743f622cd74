"""Service layer helpers (settings, storage, search, preview)."""

from .preview import PreviewServerManager, PreviewStartResult, PreviewState
from .settings import SecretVault, Settings, SettingsStore
from .storage import InMemoryStorage, WorkspaceStore
from .web_search import BraveSearchClient

__all__ = [
    "BraveSearchClient",
    "InMemoryStorage",
    "PreviewServerManager",
    "PreviewStartResult",
    "PreviewState",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "WorkspaceStore",
]
