"""Command-line entry point for running assistant exchanges."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings
from .ai.orchestration.broadcaster import QueueObserver
from .ai.orchestration.event_log import ExchangeEventLogger
from .ai.orchestration.events import ObserverEvent
from .ai.orchestration.orchestrator import AIOrchestrator, OrchestratorConfig
from .ai.orchestration.types import ExchangeOutcome, RequestContext
from .ai.profiles import available_profiles, build_executors, get_profile
from .services.panel_errors import PanelErrorStore
from .services.preview import PreviewServerManager
from .services.settings import Settings, SettingsStore, redacted_settings
from .services.storage import InMemoryStorage
from .services.web_search import BraveSearchClient
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def configure_logging(debug: bool = False, *, settings: Settings | None = None, force: bool = False) -> None:
    """Configure file and console logging for the CLI."""

    options = logging_utils.LogOptions.from_settings(settings, debug=debug)
    path = logging_utils.setup_logging(options, force=force)
    _LOGGER.debug("Logging to %s (console level=%s)", path, logging.getLevelName(options.level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


@dataclass(slots=True)
class Runtime:
    """Objects built for one CLI invocation; closed together by :meth:`aclose`."""

    orchestrator: AIOrchestrator
    storage: InMemoryStorage
    search: BraveSearchClient

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
        await self.search.aclose()


def build_runtime(settings: Settings, *, debug: bool = False, max_rounds: int | None = None) -> Runtime:
    """Wire the client, storage, executors and orchestrator from ``settings``."""

    client = AIClient(ClientSettings.from_settings(settings))
    storage = InMemoryStorage()
    search = BraveSearchClient(settings.search_api_key)
    overrides: Dict[str, Any] = {}
    if max_rounds is not None:
        overrides["max_rounds"] = max_rounds
    orchestrator = AIOrchestrator(
        client,
        storage,
        build_executors(storage, search=search),
        config=OrchestratorConfig.from_settings(settings, **overrides),
        panel_errors=PanelErrorStore(),
        event_logger=ExchangeEventLogger(enabled=settings.debug_event_logging or debug),
    )
    return Runtime(orchestrator=orchestrator, storage=storage, search=search)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `fishwallet` console script."""

    args = _parse_cli_args(argv)

    debug = args.debug or _env_flag("FISHWALLET_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("FISHWALLET_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, settings=settings, force=True)
        debug = True

    if args.command == "settings":
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0
    if args.command == "models":
        return asyncio.run(_list_models(settings))
    if args.command == "preview":
        manager = PreviewServerManager(
            install_command=None if args.no_install else ("npm", "install"),
            startup_timeout=args.startup_timeout,
        )
        try:
            return asyncio.run(_run_preview(manager, args.idea, Path(args.path).expanduser()))
        except KeyboardInterrupt:
            _LOGGER.info("Preview stopped by user.")
            return 130

    try:
        outcome = asyncio.run(
            _run_chat(
                settings,
                message=" ".join(args.message),
                feature=args.feature,
                idea_id=args.idea,
                max_rounds=args.max_rounds,
                show_thinking=args.show_thinking,
                debug=debug,
            )
        )
    except KeyboardInterrupt:
        _LOGGER.info("Exchange interrupted by user.")
        return 130
    return 0 if outcome.succeeded else 1


async def _run_chat(
    settings: Settings,
    *,
    message: str,
    feature: str,
    idea_id: str,
    max_rounds: int | None,
    show_thinking: bool,
    debug: bool,
    stream: TextIO | None = None,
) -> ExchangeOutcome:
    destination = stream or sys.stdout
    runtime = build_runtime(settings, debug=debug, max_rounds=max_rounds)
    runtime.storage.ensure_idea(idea_id)
    observer = QueueObserver()
    context = RequestContext(idea_id=idea_id, feature=feature)
    try:
        task = asyncio.create_task(
            runtime.orchestrator.run_exchange(context, message, get_profile(feature), observer=observer)
        )
        async for event in observer.events():
            _print_event(event, destination, show_thinking=show_thinking)
        outcome = await task
    finally:
        await runtime.aclose()
    destination.write(
        f"\n[{outcome.status}] rounds={outcome.rounds} tools={', '.join(outcome.tools_used) or '-'}\n"
    )
    if outcome.usage:
        destination.write(f"[usage] {json.dumps(outcome.usage, sort_keys=True)}\n")
    return outcome


async def _list_models(settings: Settings, *, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    client = AIClient(ClientSettings.from_settings(settings))
    try:
        models = await client.list_models()
    except Exception as exc:
        _LOGGER.debug("Model listing failed", exc_info=True)
        print(f"Unable to list models: {exc}", file=sys.stderr)
        return 1
    finally:
        await client.aclose()
    for name in models:
        destination.write(f"{name}\n")
    return 0


async def _run_preview(
    manager: PreviewServerManager,
    idea_id: str,
    project_path: Path,
    *,
    until: Callable[[], Awaitable[Any]] | None = None,
    stream: TextIO | None = None,
) -> int:
    """Start the preview server and keep it up until ``until()`` resolves or the run is interrupted."""

    destination = stream or sys.stdout
    try:
        result = await manager.start(idea_id, project_path)
        if not result.success:
            print(f"Preview failed: {result.error}", file=sys.stderr)
            return 1
        destination.write(f"Preview for {idea_id} running at http://localhost:{result.port}/\n")
        destination.flush()
        await (until() if until is not None else asyncio.Event().wait())
    finally:
        await manager.shutdown()
    return 0


def _print_event(event: ObserverEvent, destination: TextIO, *, show_thinking: bool = False) -> None:
    kind = event.type
    if kind == "text_delta":
        destination.write(event.text)  # type: ignore[union-attr]
    elif kind == "thinking_delta" and show_thinking:
        destination.write(event.text)  # type: ignore[union-attr]
    elif kind == "tool_call_ready":
        destination.write(f"\n[tool] {event.name} {json.dumps(dict(event.input), ensure_ascii=False)}\n")  # type: ignore[union-attr]
    elif kind == "tool_result":
        status = "ok" if event.success else f"failed: {event.error}"  # type: ignore[union-attr]
        destination.write(f"[result] {event.name} {status}\n")  # type: ignore[union-attr]
    elif kind == "search_results":
        for hit in event.results:  # type: ignore[union-attr]
            destination.write(f"  {hit.get('rank')}. {hit.get('title')} <{hit.get('url')}>\n")
    elif kind == "proposal":
        destination.write(f"[proposal] {json.dumps(dict(event.proposal), ensure_ascii=False)}\n")  # type: ignore[union-attr]
    elif kind == "snapshot_created":
        destination.write(f"[snapshot] v{event.version_number}\n")  # type: ignore[union-attr]
    elif kind == "stream_error":
        destination.write(f"\n[error] {event.message}\n")  # type: ignore[union-attr]
    destination.flush()


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fishwallet",
        description="Run assistant exchanges against an idea workspace or inspect configuration.",
    )
    parser.add_argument(
        "--settings",
        dest="settings_path",
        metavar="PATH",
        help="Override the default ~/.fishwallet/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and event logs.")
    commands = parser.add_subparsers(dest="command", required=True)

    chat = commands.add_parser("chat", help="Run one exchange and print forwarded events.")
    chat.add_argument("message", nargs="+", help="User message.")
    chat.add_argument("--feature", choices=available_profiles(), default="graph")
    chat.add_argument("--idea", default="cli-idea", help="Idea id the exchange runs against.")
    chat.add_argument("--max-rounds", type=_positive_int, default=None, metavar="N")
    chat.add_argument("--show-thinking", action="store_true", help="Print reasoning deltas.")

    commands.add_parser("settings", help="Print effective settings with secrets redacted.")
    commands.add_parser("models", help="List models offered by the provider.")

    preview = commands.add_parser("preview", help="Serve a generated app locally until interrupted.")
    preview.add_argument("path", help="Project directory containing the generated app.")
    preview.add_argument("--idea", default="cli-idea", help="Idea id the preview belongs to.")
    preview.add_argument("--no-install", action="store_true", help="Skip 'npm install' when node_modules is missing.")
    preview.add_argument("--startup-timeout", type=float, default=30.0, metavar="SECONDS")
    return parser.parse_args(argv)


def _positive_int(raw: str) -> int:
    value = int(raw, 10)
    if value < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return value


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target in (list, dict):
        try:
            value = json.loads(normalized or ("[]" if target is list else "{}"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{target.__name__} overrides must be valid JSON") from exc
        if not isinstance(value, target):
            raise ValueError(f"Expected a JSON {target.__name__}")
        return value
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "key_path": str(store.vault.key_path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": redacted_settings(settings), "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("FISHWALLET_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
