"""Runtime errors reported by the live preview, kept per idea until repaired."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

__all__ = ["PanelError", "PanelErrorStore"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PanelError:
    idea_id: str
    message: str
    source: str | None = None
    line: int | None = None
    column: int | None = None
    stack: str | None = None
    timestamp: float = field(default_factory=time.time)

    def location(self) -> str:
        if not self.line:
            return ""
        return f" at line {self.line}:{self.column}" if self.column else f" at line {self.line}"


class PanelErrorStore:
    """Collects preview errors until the repair loop consumes them."""

    def __init__(self) -> None:
        self._errors: dict[str, list[PanelError]] = {}

    def report(
        self,
        idea_id: str,
        message: str,
        *,
        source: str | None = None,
        line: int | None = None,
        column: int | None = None,
        stack: str | None = None,
    ) -> PanelError:
        error = PanelError(idea_id, message, source=source, line=line, column=column, stack=stack)
        self._errors.setdefault(idea_id, []).append(error)
        LOGGER.warning("Preview error for idea %s: %s%s", idea_id, message, error.location())
        return error

    def get(self, idea_id: str) -> list[PanelError]:
        return list(self._errors.get(idea_id, ()))

    def has_errors(self, idea_id: str) -> bool:
        return bool(self._errors.get(idea_id))

    def clear(self, idea_id: str) -> None:
        self._errors.pop(idea_id, None)
        LOGGER.debug("Cleared preview errors for idea %s", idea_id)

    def format_for_model(self, idea_id: str) -> str | None:
        """Describe the pending errors as a repair request, or ``None`` when clean."""

        errors = self.get(idea_id)
        if not errors:
            return None
        descriptions = "\n".join(
            f"{index}. {error.message}{f' in {error.source}' if error.source else ''}{error.location()}"
            for index, error in enumerate(errors, start=1)
        )
        return (
            "The code you created has runtime errors in the preview panel. Please fix these errors:\n\n"
            f"{descriptions}\n\n"
            "Review the code files and fix the issues. Use the read_file and update_file or "
            "modify_file_lines tools to correct the errors."
        )
