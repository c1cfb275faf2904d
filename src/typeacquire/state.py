"""Application state: one wired-up acquisition engine per process."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from typeacquire.cache import MetadataCache
from typeacquire.client import AcquisitionClient
from typeacquire.coordinator import RequestCoordinator
from typeacquire.installer import InstallWorker
from typeacquire.npm import NpmPackageManager, NpmRegistryClient, build_http_client
from typeacquire.registry import RegistryCache, TypesRegistryLoader
from typeacquire.resolver import PackageResolver

if TYPE_CHECKING:
    import httpx

    from typeacquire.config import Settings
    from typeacquire.protocols import PackageManager
    from typeacquire.registry import IndexLoader

log = structlog.get_logger()


@dataclass
class AppState:
    settings: Settings
    registry: RegistryCache
    resolver: PackageResolver
    worker: InstallWorker
    coordinator: RequestCoordinator
    client: AcquisitionClient
    metadata_cache: MetadataCache | None = None
    http_client: httpx.AsyncClient | None = None


def build_app_state(
    settings: Settings,
    *,
    package_manager: PackageManager,
    index_loader: IndexLoader,
    metadata_cache: MetadataCache | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AppState:
    registry = RegistryCache(index_loader)
    resolver = PackageResolver(
        registry, settings.typings_root, settings.installer.typescript_version
    )
    worker = InstallWorker(package_manager, settings.installer.timeout_seconds)
    client = AcquisitionClient(registry)
    coordinator = RequestCoordinator(resolver, worker, client.on_response)
    client.bind(coordinator)
    return AppState(
        settings=settings,
        registry=registry,
        resolver=resolver,
        worker=worker,
        coordinator=coordinator,
        client=client,
        metadata_cache=metadata_cache,
        http_client=http_client,
    )


async def _periodic_cleanup(metadata_cache: MetadataCache, interval_hours: int) -> None:
    """Purge long-expired metadata now and every ``interval_hours`` after that."""
    while True:
        await metadata_cache.cleanup_expired()
        await asyncio.sleep(interval_hours * 3600)


@contextlib.asynccontextmanager
async def open_app_state(settings: Settings) -> AsyncIterator[AppState]:
    """Open the metadata cache and HTTP client, and wire the engine on top."""
    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db:
        metadata_cache = MetadataCache(db)
        await metadata_cache.init_db()

        async with build_http_client(settings) as http_client:
            npm_registry = NpmRegistryClient(
                http_client,
                settings.registry.url,
                cache=metadata_cache,
                metadata_ttl_hours=settings.cache.metadata_ttl_hours,
            )
            loader = TypesRegistryLoader(
                npm_registry,
                settings.registry_snapshot_path,
                package_name=settings.registry.index_package,
                ttl_hours=settings.registry.index_ttl_hours,
            )
            package_manager = NpmPackageManager(
                npm_registry, settings.installer.max_concurrent_downloads
            )
            state = build_app_state(
                settings,
                package_manager=package_manager,
                index_loader=loader,
                metadata_cache=metadata_cache,
                http_client=http_client,
            )
            log.info(
                "app_state_ready",
                typings_root=str(settings.typings_root),
                registry=settings.registry.url,
            )
            cleanup = asyncio.create_task(
                _periodic_cleanup(metadata_cache, settings.cache.cleanup_interval_hours)
            )
            try:
                yield state
            finally:
                await state.coordinator.join()
                cleanup.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup
