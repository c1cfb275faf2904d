"""Integration test fixtures.

Provides a fully wired AppState over in-memory SQLite and the real npm
package manager, talking to the respx-backed registry from tests/conftest.py
(npm_registry).
"""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from tests.fakes import REGISTRY_URL, SAMPLE_ENTRIES, RecordingProjectService
from typeacquire.cache import MetadataCache
from typeacquire.npm import NpmPackageManager, NpmRegistryClient
from typeacquire.registry import TypesRegistryLoader
from typeacquire.state import AppState, build_app_state

if TYPE_CHECKING:
    from pathlib import Path

    from tests.fakes import FakeNpmRegistry
    from typeacquire.config import Settings


@pytest.fixture()
def published(npm_registry: FakeNpmRegistry) -> FakeNpmRegistry:
    """Registry with the types index and a few declaration packages."""
    npm_registry.publish(
        "types-registry", "0.1.0", files={"index.json": json.dumps({"entries": SAMPLE_ENTRIES})}
    )
    npm_registry.publish("@types/left-pad", "1.3.0")
    npm_registry.publish("@types/lodash", "4.17.20")
    npm_registry.publish("@types/lodash", "4.17.21")
    npm_registry.publish("csstype", "3.1.3")
    npm_registry.publish("@types/react", "18.3.1", {"csstype": "^3.0.2"})
    return npm_registry


@pytest.fixture()
async def app_state(settings: Settings, published: FakeNpmRegistry) -> AppState:
    async with aiosqlite.connect(":memory:") as db:
        metadata_cache = MetadataCache(db)
        await metadata_cache.init_db()

        async with httpx.AsyncClient() as client:
            npm = NpmRegistryClient(client, REGISTRY_URL, cache=metadata_cache)
            state = build_app_state(
                settings,
                package_manager=NpmPackageManager(npm),
                index_loader=TypesRegistryLoader(npm, settings.registry_snapshot_path),
                metadata_cache=metadata_cache,
                http_client=client,
            )
            yield state
            await state.coordinator.join()


@pytest.fixture()
def service(app_state: AppState) -> RecordingProjectService:
    recorder = RecordingProjectService()
    app_state.client.attach(recorder)
    return recorder


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Environment for running the CLI with all state under tmp_path."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("TYPEACQUIRE__")}
    env["TYPEACQUIRE__DATA_DIR"] = str(tmp_path / "data")
    env["TYPEACQUIRE__CACHE__DB_PATH"] = str(tmp_path / "data" / "metadata.db")
    env["TYPEACQUIRE__CACHE__TYPINGS_ROOT"] = str(tmp_path / "typings")
    # Unroutable registry: nothing in these tests may reach the network
    env["TYPEACQUIRE__REGISTRY__URL"] = "http://127.0.0.1:9"
    env["TYPEACQUIRE__REGISTRY__REQUEST_TIMEOUT_SECONDS"] = "2"
    return env
