"""Tests for per-feature profiles and executor wiring."""

from __future__ import annotations

import pytest

from fishwallet.ai.orchestration.tool_router import NoAuxiliaryEvents, StandardAuxiliaryRules
from fishwallet.ai.profiles import (
    FeatureProfile,
    available_profiles,
    build_executors,
    get_profile,
    graph_profile,
    synthesis_profile,
    voice_profile,
)
from fishwallet.ai.tools.registry import ToolFamily

from tests.helpers import fake_catalog


def test_available_profiles() -> None:
    assert available_profiles() == ("graph", "synthesis", "voice")
    assert get_profile("voice").name == "voice"
    with pytest.raises(ValueError, match="Unknown feature 'chess'"):
        get_profile("chess")


def test_graph_profile_tools_and_snapshots() -> None:
    profile = graph_profile()

    assert "create_dependency_node" in profile.catalog
    assert "firecrawl_search" in profile.catalog
    assert "create_file" not in profile.catalog
    assert isinstance(profile.rules, StandardAuxiliaryRules)
    assert "create_dependency_node" in profile.snapshot_tools()
    assert "read_dependency_nodes" not in profile.snapshot_tools()
    assert profile.panel_error_repair is False


def test_synthesis_profile_repairs_preview_errors() -> None:
    profile = synthesis_profile()

    assert profile.panel_error_repair is True
    assert {"update_synthesis", "create_file", "read_notes"} <= set(profile.catalog.names)
    assert "modify_file_lines" in profile.snapshot_tools()


def test_voice_profile_never_snapshots() -> None:
    profile = voice_profile()

    assert profile.snapshot_tools() == frozenset()
    assert isinstance(profile.rules, NoAuxiliaryEvents)
    assert {schema.family for schema in profile.catalog} == {ToolFamily.OTHER}


def test_explicit_mutating_tools_override_catalog() -> None:
    profile = FeatureProfile(name="x", catalog=fake_catalog(), preamble=lambda store, idea_id: "", mutating_tools=frozenset({"lookup"}))

    assert profile.snapshot_tools() == frozenset({"lookup"})


def test_graph_preamble_reflects_storage(storage) -> None:
    profile = graph_profile()
    assert "No dependency nodes exist yet" in profile.system_prompt(storage, "idea-1")

    stripe = storage.create_node("idea-1", name="Stripe", provider="stripe", description="Payments")
    db = storage.create_node("idea-1", name="Postgres", provider="supabase", description="DB")
    storage.create_connection("idea-1", stripe.id, db.id, label="stores")

    prompt = profile.system_prompt(storage, "idea-1")
    assert '## Project: "Coffee subscription app"' in prompt
    assert f"- Stripe (stripe) [ID: {stripe.id}]" in prompt
    assert "- Stripe -> Postgres (stores)" in prompt


def test_synthesis_preamble_numbers_lines(storage) -> None:
    storage.update_synthesis("idea-1", "# Plan\n- payments")
    storage.create_file("idea-1", "App.tsx", "x", is_entry_file=True)

    prompt = synthesis_profile().system_prompt(storage, "idea-1")

    assert "  1 | # Plan\n  2 | - payments" in prompt
    assert "- App.tsx (tsx) [ENTRY FILE] - 1 lines" in prompt


def test_every_catalog_tool_has_an_executor(storage) -> None:
    executors = build_executors(storage)

    for profile in (graph_profile(), synthesis_profile(), voice_profile()):
        for schema in profile.catalog:
            assert schema.name in executors[schema.family].tool_names, schema.name
