"""Post-exchange snapshot of persisted state."""

from __future__ import annotations

import inspect
import logging
from typing import Iterable

from ...services.storage import Snapshot, VersioningStore
from .broadcaster import EventBroadcaster
from .events import SnapshotCreated
from .types import RequestContext

__all__ = ["SnapshotTrigger"]

LOGGER = logging.getLogger(__name__)


class SnapshotTrigger:
    """Requests one snapshot when an exchange ran any mutating tool.

    Runs once per exchange, after the round loop. A failing versioning store
    is logged and otherwise ignored; the exchange still succeeds.

    Args:
        versioning: Store that records snapshots.
        mutating_tools: Tool names whose success changes persisted state.
    """

    def __init__(self, versioning: VersioningStore | None, mutating_tools: Iterable[str]) -> None:
        self._versioning = versioning
        self._mutating = frozenset(mutating_tools)

    @property
    def mutating_tools(self) -> frozenset[str]:
        return self._mutating

    def needs_snapshot(self, tools_used: Iterable[str]) -> bool:
        return any(name in self._mutating for name in tools_used)

    async def run(
        self,
        context: RequestContext,
        tools_used: Iterable[str],
        broadcaster: EventBroadcaster,
    ) -> Snapshot | None:
        used = tuple(dict.fromkeys(tools_used))
        if self._versioning is None or not self.needs_snapshot(used):
            return None
        try:
            snapshot = self._versioning.create_snapshot(context.idea_id, used)
            if inspect.isawaitable(snapshot):
                snapshot = await snapshot
        except Exception:
            LOGGER.warning("Snapshot for idea %s failed; exchange result is unaffected", context.idea_id, exc_info=True)
            return None
        LOGGER.info("Snapshot v%s created for idea %s after %s", snapshot.version_number, context.idea_id, ", ".join(used))
        await broadcaster.emit(SnapshotCreated(version_id=snapshot.id, version_number=snapshot.version_number))
        return snapshot
