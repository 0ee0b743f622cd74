"""Tests covering the command-line bootstrap helpers."""

from __future__ import annotations

import argparse
import asyncio
import io
import json
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

from fishwallet import app
from fishwallet.ai.orchestration.events import (
    SnapshotCreated,
    StreamFailure,
    TextDelta,
    ThinkingDelta,
    ToolCallReady,
    ToolResultEvent,
)
from fishwallet.services.preview import PreviewServerManager, PreviewState, find_free_port
from fishwallet.services.settings import SecretVault, Settings, SettingsStore


def test_coerce_cli_overrides_uses_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "model=gpt-4.1",
            "max_tool_rounds=25",
            "temperature=0.3",
            "concurrent_tool_execution=yes",
            "organization=none",
            'default_headers={"X-Test": "1"}',
        ]
    )

    assert overrides == {
        "model": "gpt-4.1",
        "max_tool_rounds": 25,
        "temperature": 0.3,
        "concurrent_tool_execution": True,
        "organization": None,
        "default_headers": {"X-Test": "1"},
    }


@pytest.mark.parametrize(
    "entry",
    ["model", "=value", "theme=dark", "max_tool_rounds=many", "debug_logging=maybe", "metadata=[1]"],
)
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_coerce_value_handles_optional_and_lists() -> None:
    assert app._coerce_value(Optional[float], "null") is None
    assert app._coerce_value(Optional[float], "1.5") == 1.5
    assert app._coerce_value(list[str], "") == []
    assert app._coerce_value(str, "  padded  ") == "padded"


@pytest.mark.parametrize("value,expected", [("ON", True), ("1", True), ("off", False), ("disabled", False)])
def test_parse_bool(value: str, expected: bool) -> None:
    assert app._parse_bool(value) is expected


def test_positive_int() -> None:
    assert app._positive_int("3") == 3
    with pytest.raises(argparse.ArgumentTypeError):
        app._positive_int("0")


def test_env_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    assert app._env_flag("FISHWALLET_DEBUG", default=True) is True
    monkeypatch.setenv("FISHWALLET_DEBUG", "no")
    assert app._env_flag("FISHWALLET_DEBUG", default=True) is False


def test_load_settings_falls_back_on_store_errors(tmp_path: Path) -> None:
    class _BrokenStore:
        path = tmp_path / "settings.json"

        def load(self, overrides: Any = None) -> Settings:
            raise OSError("permission denied")

    assert app.load_settings(store=_BrokenStore()) == Settings()  # type: ignore[arg-type]


def test_settings_command_prints_redacted_settings(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path, vault=SecretVault(key_path=path.with_suffix(".key"))).save(Settings(api_key="sk-123456"))

    exit_code = app.main(["--settings", str(path), "--set", "model=gpt-4.1", "settings"])

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["settings"]["api_key"] == "sk*****56"
    assert output["settings"]["model"] == "gpt-4.1"
    assert output["meta"]["path"] == str(path)
    assert output["meta"]["cli_overrides"] == ["model"]


def test_invalid_override_exits_with_usage_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings", str(tmp_path / "settings.json"), "--set", "bogus=1", "settings"])

    assert exit_code == 2
    assert "Unknown setting 'bogus'" in capsys.readouterr().err


def test_print_event_renders_forwarded_events() -> None:
    buffer = io.StringIO()

    for event in (
        ThinkingDelta(text="hidden"),
        TextDelta(text="Hello"),
        ToolCallReady(id="c1", name="create_node", input={"name": "Stripe"}),
        ToolResultEvent(tool_call_id="c1", name="create_node", success=False, error="boom"),
        SnapshotCreated(version_id="v1", version_number=2),
        StreamFailure(message="lost"),
    ):
        app._print_event(event, buffer)

    rendered = buffer.getvalue()
    assert "hidden" not in rendered
    assert rendered.startswith("Hello")
    assert '[tool] create_node {"name": "Stripe"}' in rendered
    assert "[result] create_node failed: boom" in rendered
    assert "[snapshot] v2" in rendered
    assert "[error] lost" in rendered


def test_build_runtime_applies_round_override() -> None:
    runtime = app.build_runtime(Settings(api_key="k", max_tool_rounds=9), max_rounds=4)

    assert runtime.orchestrator.config.max_rounds == 4


# =============================================================================
# Preview command
# =============================================================================


def _preview_manager(script: str) -> PreviewServerManager:
    return PreviewServerManager(
        command_factory=lambda port: [sys.executable, "-c", script.format(port=port)],
        install_command=None,
        stop_grace=2.0,
        port_finder=find_free_port,
    )


@pytest.mark.asyncio
async def test_preview_prints_url_and_stops_server(tmp_path: Path) -> None:
    manager = _preview_manager("import time; print('ready on localhost:{port}', flush=True); time.sleep(60)")
    buffer = io.StringIO()

    exit_code = await app._run_preview(manager, "idea-7", tmp_path, until=lambda: asyncio.sleep(0), stream=buffer)

    assert exit_code == 0
    assert "Preview for idea-7 running at http://localhost:" in buffer.getvalue()
    assert manager.state is PreviewState.IDLE
    assert manager.active is None


@pytest.mark.asyncio
async def test_preview_failure_exits_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    manager = _preview_manager("import sys; sys.stderr.write('vite missing\\n'); sys.exit(2)")

    exit_code = await app._run_preview(manager, "idea-7", tmp_path, until=lambda: asyncio.sleep(0), stream=io.StringIO())

    assert exit_code == 1
    assert "vite missing" in capsys.readouterr().err


def test_preview_subcommand_arguments(tmp_path: Path) -> None:
    args = app._parse_cli_args(["preview", str(tmp_path), "--idea", "idea-3", "--no-install", "--startup-timeout", "5"])

    assert (args.command, args.path, args.idea, args.no_install, args.startup_timeout) == (
        "preview",
        str(tmp_path),
        "idea-3",
        True,
        5.0,
    )
