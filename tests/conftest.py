"""Shared fixtures: a sample types registry and a wired engine over a fake
package manager."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import respx

from tests.fakes import FakeNpmRegistry, FakePackageManager, StaticLoader
from typeacquire.config import Settings
from typeacquire.coordinator import RequestCoordinator
from typeacquire.installer import InstallWorker
from typeacquire.registry import RegistryCache
from typeacquire.resolver import PackageResolver

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def cache_root(tmp_path: Path) -> Path:
    root = tmp_path / "typings"
    root.mkdir()
    return root


@pytest.fixture()
def settings(tmp_path: Path, cache_root: Path) -> Settings:
    return Settings(
        data_dir=str(tmp_path / "data"),
        cache={"typings_root": str(cache_root), "db_path": str(tmp_path / "data" / "meta.db")},
    )


@pytest.fixture()
def loader() -> StaticLoader:
    return StaticLoader()


@pytest.fixture()
def registry(loader: StaticLoader) -> RegistryCache:
    return RegistryCache(loader)


@pytest.fixture()
def package_manager() -> FakePackageManager:
    return FakePackageManager()


@pytest.fixture()
def resolver(registry: RegistryCache, cache_root: Path) -> PackageResolver:
    return PackageResolver(registry, cache_root, typescript_version="5.4")


@pytest.fixture()
def worker(package_manager: FakePackageManager) -> InstallWorker:
    return InstallWorker(package_manager, timeout_seconds=5)


@pytest.fixture()
def responses() -> list[Any]:
    return []


@pytest.fixture()
def coordinator(
    resolver: PackageResolver, worker: InstallWorker, responses: list[Any]
) -> RequestCoordinator:
    return RequestCoordinator(resolver, worker, responses.append)


@pytest.fixture()
def npm_registry():
    """Fake npm registry answering every request to its host."""
    registry = FakeNpmRegistry()
    with respx.mock(assert_all_called=False) as router:
        router.route(host="registry.test").mock(side_effect=registry.handle)
        yield registry
