"""Types registry: loading, snapshotting, and non-blocking membership lookups.

The registry index maps typing names ("lodash") to the dist-tags of their
declaration packages. It ships as ``index.json`` inside the
``types-registry`` npm package; a copy is kept on disk so restarts within
the TTL do not hit the network.

Lookups gate editor completions, so they never wait: the first query after
startup answers ``False`` and schedules the load in the background.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog

from typeacquire.errors import RegistryUnavailable, TypeAcquireError
from typeacquire.manifest import write_json_atomic
from typeacquire.models.registry import RegistryIndex
from typeacquire.names import is_valid_package_name
from typeacquire.npm import read_tarball_member, select_version

if TYPE_CHECKING:
    from pathlib import Path

    from typeacquire.npm import NpmRegistryClient

log = structlog.get_logger()

IndexLoader = Callable[[], Awaitable[RegistryIndex]]


def parse_index(payload: Any) -> dict[str, dict[str, str]]:
    """Extract ``{name: {tag: version}}`` from a types-registry index document."""
    entries = payload.get("entries") if isinstance(payload, dict) else None
    if not isinstance(entries, dict):
        raise RegistryUnavailable("Registry index has no 'entries' object")
    return {
        str(name): {str(tag): str(version) for tag, version in tags.items()}
        for name, tags in entries.items()
        if isinstance(tags, dict)
    }


class TypesRegistryLoader:
    """Loads the index from a fresh local snapshot, else from the npm registry."""

    def __init__(
        self,
        registry: NpmRegistryClient,
        snapshot_path: Path,
        package_name: str = "types-registry",
        ttl_hours: int = 24,
    ) -> None:
        self._registry = registry
        self._snapshot_path = snapshot_path
        self._package_name = package_name
        self._ttl_seconds = ttl_hours * 3600

    def _read_snapshot(self) -> tuple[dict[str, dict[str, str]], bool] | None:
        """Return (entries, is_fresh), or None when there is no usable snapshot."""
        try:
            age = time.time() - self._snapshot_path.stat().st_mtime
            payload = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
            return parse_index(payload), age < self._ttl_seconds
        except (OSError, ValueError, RegistryUnavailable):
            return None

    async def _fetch(self) -> dict[str, Any]:
        packument = await self._registry.get_packument(self._package_name)
        version = select_version(packument, "latest")
        dist = ((packument.get("versions") or {}).get(version) or {}).get("dist") or {}
        if not dist.get("tarball"):
            raise RegistryUnavailable(f"{self._package_name} has no downloadable latest version")
        data = await self._registry.fetch_tarball(
            dist["tarball"], dist.get("integrity") or dist.get("shasum")
        )
        raw = await asyncio.to_thread(read_tarball_member, data, "index.json")
        return json.loads(raw)

    async def __call__(self) -> RegistryIndex:
        snapshot = await asyncio.to_thread(self._read_snapshot)
        if snapshot is not None and snapshot[1]:
            return RegistryIndex(entries=snapshot[0], source="snapshot")

        try:
            payload = await self._fetch()
            entries = parse_index(payload)
        except (TypeAcquireError, ValueError) as exc:
            if snapshot is not None:
                log.warning("registry_stale_snapshot_used", error=str(exc))
                return RegistryIndex(entries=snapshot[0], source="snapshot")
            raise RegistryUnavailable(f"Cannot load types registry: {exc}") from exc

        try:
            await asyncio.to_thread(write_json_atomic, self._snapshot_path, payload)
        except OSError:
            log.warning(
                "registry_snapshot_write_error", path=str(self._snapshot_path), exc_info=True
            )
        return RegistryIndex(entries=entries, source="network")


class RegistryCache:
    """Owns the one RegistryIndex of the process and its load/invalidate lifecycle."""

    def __init__(self, loader: IndexLoader) -> None:
        self._loader = loader
        self._index: RegistryIndex | None = None
        self._load_task: asyncio.Task[RegistryIndex] | None = None
        # Set once a load has been attempted; cleared by invalidate()
        self._requested = False
        self._stale = False
        self.last_error: RegistryUnavailable | None = None

    @property
    def index(self) -> RegistryIndex | None:
        return self._index

    @property
    def loading(self) -> bool:
        return self._load_task is not None

    def _start_load(self) -> asyncio.Task[RegistryIndex]:
        if self._load_task is None:
            task = asyncio.get_running_loop().create_task(self._run_load())
            # Failures are recorded in last_error; nobody has to await a background load.
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._load_task = task
        self._requested = True
        return self._load_task

    async def _run_load(self) -> RegistryIndex:
        try:
            index = await self._loader()
        except Exception as exc:
            error = exc if isinstance(exc, RegistryUnavailable) else RegistryUnavailable(str(exc))
            self._index = None
            self._stale = False
            self.last_error = error
            log.warning("registry_load_failed", error=error.message)
            if error is exc:
                raise
            raise error from exc
        else:
            self._index = index
            self._stale = False
            self.last_error = None
            log.info("registry_loaded", entries=len(index), source=index.source)
            return index
        finally:
            self._load_task = None

    async def load(self) -> RegistryIndex:
        """Load the index once. Concurrent callers share the in-flight load.

        Raises ``RegistryUnavailable`` when the index cannot be obtained.
        """
        if self._index is not None and not self._stale:
            return self._index
        return await asyncio.shield(self._start_load())

    async def current(self) -> RegistryIndex | None:
        """The loaded index, loading it first if it was never requested.

        Does not retry after a failed load until ``invalidate()`` is called.
        """
        if self._index is not None and not self._stale:
            return self._index
        if self._requested and self._load_task is None and self._index is None:
            return None
        try:
            return await self.load()
        except RegistryUnavailable:
            return None

    def invalidate(self) -> None:
        """Mark the index for reload. The old snapshot answers until the new one is ready."""
        self._requested = False
        self._stale = True
        log.info("registry_invalidated")

    def is_known_types_package(self, name: str) -> bool:
        """Non-blocking membership check; ``False`` until the index is loaded."""
        if not is_valid_package_name(name):
            return False
        if not self._requested:
            try:
                self._start_load()
            except RuntimeError:
                # No running event loop; try again on the next lookup.
                log.debug("registry_load_deferred")
        index = self._index
        return index is not None and name in index

    def version_for(self, name: str, typescript_version: str) -> str | None:
        index = self._index
        return index.version_for(name, typescript_version) if index is not None else None
