"""Install planning: typing names -> declaration packages at concrete versions.

Planning never fails because of a package name. Invalid names and names the
types registry does not list are dropped, and while the registry is
unavailable every name is. Packages already present in the cache root at
the wanted version are reported as skipped. The only failure is
a cache-root manifest that cannot be created or read.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from typeacquire.errors import ManifestWriteError
from typeacquire.manifest import (
    declared_dependencies,
    ensure_manifest,
    installed_version,
    read_manifest,
)
from typeacquire.models.install import InstallPlan, ResolvedPackage
from typeacquire.names import is_valid_package_name, types_package_name

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from typeacquire.registry import RegistryCache

log = structlog.get_logger()

class PackageResolver:
    def __init__(self, registry: RegistryCache, cache_root: Path, typescript_version: str) -> None:
        self._registry = registry
        self._cache_root = cache_root
        self._typescript_version = typescript_version

    @property
    def cache_root(self) -> Path:
        return self._cache_root

    def _is_installed(self, package: str, declared: dict[str, str], wanted: str) -> bool:
        if package not in declared:
            return False
        present = installed_version(self._cache_root, package)
        if present is None:
            return False
        return present == wanted

    async def _load_manifest(self) -> dict:
        try:
            created = await asyncio.to_thread(ensure_manifest, self._cache_root)
            manifest = await asyncio.to_thread(read_manifest, self._cache_root)
        except ManifestWriteError as exc:
            log.warning("manifest_unavailable", cache_root=str(self._cache_root), error=exc.message)
            raise
        if created:
            log.info("manifest_created", cache_root=str(self._cache_root))
        return manifest

    async def plan(
        self,
        project_root: Path,
        package_names: Iterable[str],
        *,
        request_id: int = 0,
    ) -> InstallPlan:
        """Compute the install plan for ``package_names``.

        ``project_root`` only identifies the requester; acquired packages always
        land in the shared cache root.
        """
        manifest = await self._load_manifest()
        declared = declared_dependencies(manifest)
        index = await self._registry.current()

        resolved: list[ResolvedPackage] = []
        skipped: list[str] = []
        seen: set[str] = set()
        for name in package_names:
            if name in seen:
                continue
            seen.add(name)

            if not is_valid_package_name(name):
                log.debug("package_name_rejected", name=name, request_id=request_id)
                continue

            if index is None:
                # Without the registry every name is unknown
                log.debug("package_registry_unavailable", name=name, request_id=request_id)
                continue
            version = index.version_for(name, self._typescript_version)
            if version is None:
                log.debug("package_not_in_registry", name=name, request_id=request_id)
                continue

            package = types_package_name(name)
            if await asyncio.to_thread(self._is_installed, package, declared, version):
                skipped.append(name)
                continue
            resolved.append(ResolvedPackage(name=name, version_range=version))

        plan = InstallPlan(
            request_id=request_id,
            resolved_packages=tuple(resolved),
            skipped=tuple(skipped),
            target_cache_root=self._cache_root,
        )
        log.info(
            "install_planned",
            request_id=request_id,
            project_root=str(project_root),
            packages=[p.package_name for p in resolved],
            skipped=skipped,
            registry_loaded=index is not None,
        )
        return plan
