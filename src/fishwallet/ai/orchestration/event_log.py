"""Debug event logging for assistant exchanges."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from ...utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _NullExchangeEventLogRun:
    """No-op implementation used when event logging is disabled."""

    path: Path | None = None

    def __enter__(self) -> "_NullExchangeEventLogRun":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        return False

    def log_event(self, *_: Any, **__: Any) -> None:
        return

    def log_round(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return


class ExchangeEventLogRun:
    """Context manager that writes structured JSONL entries for one exchange."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self._finalized = False
        self._write_entry("start", context)

    def __enter__(self) -> "ExchangeEventLogRun":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        if exc is not None and not self._finalized:
            self.log_failure(message=str(exc) or exc_type.__name__)
        elif not self._finalized:
            self.log_failure(message="exchange aborted without completion")
        return False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def close(self) -> None:
        try:
            self._file.close()
        except OSError:  # pragma: no cover - teardown
            LOGGER.debug("Failed to close event log %s", self.path, exc_info=True)

    def log_event(self, event: Mapping[str, Any]) -> None:
        if self._finalized:
            return
        self._write_entry("event", {"payload": dict(event)})

    def log_round(
        self,
        *,
        round_index: int,
        stop_reason: str | None,
        response_text: str,
        tool_calls: Sequence[Mapping[str, Any]] | None,
    ) -> None:
        if self._finalized:
            return
        payload = {
            "round_index": round_index,
            "stop_reason": stop_reason,
            "response_text": response_text,
            "tool_calls": list(tool_calls or ()),
        }
        self._write_entry("round", payload)

    def log_completion(
        self,
        *,
        status: str,
        rounds: int,
        tools_used: Sequence[str],
        usage: Mapping[str, int] | None = None,
    ) -> None:
        if self._finalized:
            return
        payload = {
            "status": status,
            "rounds": rounds,
            "tools_used": list(tools_used),
            "usage": dict(usage or {}),
        }
        self._write_entry("completion", payload)
        self._finalized = True
        self.close()

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            return
        payload: dict[str, Any] = {
            "status": "failure",
            "message": message,
        }
        if details:
            payload["details"] = dict(details)
        self._write_entry("failure", payload)
        self._finalized = True
        self.close()

    def _write_entry(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        entry: dict[str, Any] = {
            "event": event,
            "timestamp": time.time(),
        }
        if payload:
            for key, value in payload.items():
                entry[key] = self._safe_json(value)
        json.dump(entry, self._file, ensure_ascii=False)
        self._file.write("\n")
        self._file.flush()

    def _safe_json(self, value: Any, *, depth: int = 0) -> Any:
        if depth > 6:
            return repr(value)
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Mapping):
            return {str(key): self._safe_json(val, depth=depth + 1) for key, val in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._safe_json(item, depth=depth + 1) for item in value]
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return repr(value)


ExchangeLog = ExchangeEventLogRun | _NullExchangeEventLogRun


class ExchangeEventLogger:
    """Factory for per-exchange event logs when debug logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else logging_utils.event_log_dir()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def start_run(
        self,
        *,
        request_id: str,
        idea_id: str,
        feature: str,
        prompt: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ExchangeLog:
        if not self.enabled:
            return _NullExchangeEventLogRun()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(request_id)
            context = {
                "request_id": request_id,
                "idea_id": idea_id,
                "feature": feature,
                "prompt": prompt,
                "metadata": dict(metadata or {}),
            }
            log_run = ExchangeEventLogRun(path, context=context)
            LOGGER.debug("Exchange event log started: %s", path)
            return log_run
        except OSError:  # pragma: no cover - best effort logging
            LOGGER.debug("Failed to start exchange event log", exc_info=True)
            return _NullExchangeEventLogRun()

    def _allocate_path(self, request_id: str) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        safe_id = "".join(ch for ch in request_id if ch.isalnum())[:12] or "run"
        return self._base_dir / f"exchange-{timestamp}-{safe_id}.jsonl"


__all__ = [
    "ExchangeEventLogger",
    "ExchangeEventLogRun",
    "ExchangeLog",
]
