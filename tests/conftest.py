"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from fishwallet.ai.orchestration.types import RequestContext
from fishwallet.services.storage import InMemoryStorage

from tests.helpers import FakeExecutor, RecordingObserver, fake_catalog


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(idea_id="idea-1", feature="graph", request_id="req-1")


@pytest.fixture
def storage() -> InMemoryStorage:
    store = InMemoryStorage()
    store.create_idea("Coffee subscription app", idea_id="idea-1")
    return store


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def catalog():
    return fake_catalog()


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep settings, keys and logs out of the real home directory."""

    monkeypatch.setenv("FISHWALLET_LOG_DIR", str(tmp_path / "logs"))
    for name in list(os.environ):
        if name.startswith("FISHWALLET_") and name != "FISHWALLET_LOG_DIR":
            monkeypatch.delenv(name, raising=False)
