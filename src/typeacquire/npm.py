"""npm registry package fetcher.

Implements the package-fetch collaborator used by the install worker:
``resolve_project`` computes the dependency closure of a cache root's
manifest plus the requested packages, and ``ResolvedProject.restore`` fetches
and materializes it into ``node_modules``.

Restore is all-or-nothing. Every tarball is downloaded, verified and
extracted into a staging directory first; only then is ``node_modules``
updated with plain renames and the manifest and lockfile are replaced. The
commit step has no suspension points, so no other coroutine can observe a
half-installed cache root.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import io
import shutil
import tarfile
import tempfile
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
import nodesemver
import structlog

from typeacquire.errors import ErrorCode, InstallFailure
from typeacquire.manifest import (
    LOCKFILE_NAME,
    MANIFEST_NAME,
    NODE_MODULES,
    declared_dependencies,
    installed_version,
    read_lockfile,
    read_manifest,
    write_json_atomic,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from typeacquire.cache import MetadataCache
    from typeacquire.config import Settings

log = structlog.get_logger()

LOCKFILE_VERSION = 3
_ABBREVIATED_METADATA = "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8"


class PackageType(StrEnum):
    DEPENDENCY = "dependencies"
    DEV_DEPENDENCY = "devDependencies"


def build_http_client(settings: Settings | None = None) -> httpx.AsyncClient:
    timeout = settings.registry.request_timeout_seconds if settings else 30.0
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        headers={"User-Agent": "typeacquire"},
    )


def packument_url(registry_url: str, name: str) -> str:
    """``@types/node`` is requested as ``@types%2Fnode``."""
    return f"{registry_url.rstrip('/')}/{quote(name, safe='@')}"


# ---------------------------------------------------------------------------
# Registry client
# ---------------------------------------------------------------------------


class NpmRegistryClient:
    """Fetches packuments and tarballs, with an optional metadata cache in front."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        registry_url: str,
        cache: MetadataCache | None = None,
        metadata_ttl_hours: int = 24,
    ) -> None:
        self._client = client
        self._registry_url = registry_url
        self._cache = cache
        self._ttl_hours = metadata_ttl_hours

    async def get_packument(self, name: str) -> dict[str, Any]:
        cached = await self._cache.get_packument(name) if self._cache else None
        if cached is not None and not cached.stale:
            return cached.content

        url = packument_url(self._registry_url, name)
        try:
            response = await self._client.get(url, headers={"Accept": _ABBREVIATED_METADATA})
        except httpx.HTTPError as exc:
            if cached is not None:
                log.warning("packument_stale_fallback", package=name, error=str(exc))
                return cached.content
            raise InstallFailure(
                f"Failed to fetch metadata for {name}: {exc}", ErrorCode.FETCH_FAILED
            ) from exc

        if response.status_code == 404:
            raise InstallFailure(
                f"Package {name} does not exist in the registry",
                ErrorCode.PACKAGE_NOT_FOUND,
                recoverable=False,
            )
        if response.status_code != 200:
            if cached is not None:
                log.warning("packument_stale_fallback", package=name, status=response.status_code)
                return cached.content
            raise InstallFailure(
                f"Registry returned HTTP {response.status_code} for {name}",
                ErrorCode.FETCH_FAILED,
            )

        try:
            packument = response.json()
        except ValueError as exc:
            raise InstallFailure(
                f"Registry returned invalid JSON for {name}", ErrorCode.FETCH_FAILED
            ) from exc
        if not isinstance(packument, dict):
            raise InstallFailure(f"Malformed packument for {name}", ErrorCode.FETCH_FAILED)

        if self._cache is not None:
            await self._cache.set_packument(name, packument, self._ttl_hours)
        return packument

    async def fetch_tarball(self, url: str, integrity: str | None = None) -> bytes:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise InstallFailure(
                f"Failed to download {url}: {exc}", ErrorCode.FETCH_FAILED
            ) from exc
        if response.status_code != 200:
            raise InstallFailure(
                f"Tarball download returned HTTP {response.status_code}: {url}",
                ErrorCode.FETCH_FAILED,
            )
        data = response.content
        if integrity and not verify_integrity(data, integrity):
            raise InstallFailure(
                f"Integrity check failed for {url}",
                ErrorCode.INTEGRITY_MISMATCH,
                recoverable=False,
            )
        return data


def verify_integrity(data: bytes, integrity: str) -> bool:
    """Check ``data`` against an SRI string or a bare hex sha1 shasum."""
    checked = False
    for token in integrity.split():
        algorithm, sep, expected = token.partition("-")
        if not sep:
            # Legacy "shasum" field: hex sha1
            checked = True
            if hashlib.sha1(data).hexdigest() == token.lower():
                return True
            continue
        if algorithm not in ("sha1", "sha256", "sha384", "sha512"):
            continue
        checked = True
        digest = base64.b64encode(hashlib.new(algorithm, data).digest()).decode("ascii")
        if digest == expected:
            return True
    return not checked


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def select_version(packument: Mapping[str, Any], spec: str) -> str | None:
    """Resolve a dist-tag or semver range against a packument."""
    tags = packument.get("dist-tags") or {}
    versions = list((packument.get("versions") or {}).keys())
    spec = spec.strip()
    if spec in tags:
        return tags[spec]
    if spec in ("", "*", "latest"):
        return tags.get("latest") or _max_satisfying(versions, "*")
    return _max_satisfying(versions, spec)


def _max_satisfying(versions: list[str], spec: str) -> str | None:
    try:
        return nodesemver.max_satisfying(versions, spec, loose=True)
    except (ValueError, TypeError):
        return None


def _satisfies(version: str, spec: str) -> bool:
    try:
        return bool(nodesemver.satisfies(version, spec, loose=True))
    except (ValueError, TypeError):
        return False


def _matches(version: str, spec: str) -> bool:
    return spec == version or _satisfies(version, spec)


@dataclass(frozen=True)
class ResolvedNode:
    name: str
    version: str
    # Install location relative to the project root, e.g. "node_modules/@types/react"
    path: str
    tarball: str
    integrity: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    dev: bool = False

    def lock_entry(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"version": self.version, "resolved": self.tarball}
        if self.integrity:
            entry["integrity"] = self.integrity
        if self.dependencies:
            entry["dependencies"] = dict(self.dependencies)
        if self.dev:
            entry["dev"] = True
        return entry


def _nested_path(parent: str, name: str) -> str:
    prefix = f"{parent}/" if parent else ""
    return f"{prefix}{NODE_MODULES}/{name}"


class NpmPackageManager:
    """Resolves project manifests against an npm registry."""

    def __init__(self, registry: NpmRegistryClient, max_concurrent_downloads: int = 8) -> None:
        self._registry = registry
        self._max_downloads = max_concurrent_downloads

    async def resolve_project(
        self,
        root: Path,
        *,
        add_packages: Mapping[str, str],
        package_type: PackageType = PackageType.DEV_DEPENDENCY,
    ) -> ResolvedProject:
        manifest = await asyncio.to_thread(read_manifest, root)
        lockfile = await asyncio.to_thread(read_lockfile, root)

        section = dict(manifest.get(package_type.value) or {})
        section.update(add_packages)
        manifest = {**manifest, package_type.value: section}

        resolver = _TreeResolver(self._registry, lockfile)
        nodes = await resolver.resolve(declared_dependencies(manifest), dev=set(section))

        # Pin what was just added so later resolutions are stable.
        for name in add_packages:
            node = nodes.get(_nested_path("", name))
            if node is not None:
                section[name] = node.version

        log.info(
            "project_resolved",
            root=str(root),
            packages=len(nodes),
            added=sorted(add_packages),
        )
        return ResolvedProject(
            root=root,
            manifest=manifest,
            nodes=nodes,
            registry=self._registry,
            max_concurrent_downloads=self._max_downloads,
        )


class _TreeResolver:
    def __init__(self, registry: NpmRegistryClient, lockfile: Mapping[str, Any]) -> None:
        self._registry = registry
        self._locked: Mapping[str, Any] = lockfile.get("packages") or {}
        self._packuments: dict[str, dict[str, Any]] = {}

    async def _packument(self, name: str) -> dict[str, Any]:
        if name not in self._packuments:
            self._packuments[name] = await self._registry.get_packument(name)
        return self._packuments[name]

    def _from_lock(self, name: str, spec: str, path: str, dev: bool) -> ResolvedNode | None:
        entry = self._locked.get(path)
        if not isinstance(entry, dict) or not isinstance(entry.get("version"), str):
            return None
        version = entry["version"]
        if not _matches(version, spec):
            return None
        return ResolvedNode(
            name=name,
            version=version,
            path=path,
            tarball=str(entry.get("resolved") or ""),
            integrity=entry.get("integrity"),
            dependencies=dict(entry.get("dependencies") or {}),
            dev=dev,
        )

    async def _from_registry(self, name: str, spec: str, path: str, dev: bool) -> ResolvedNode:
        packument = await self._packument(name)
        version = select_version(packument, spec)
        manifest = (packument.get("versions") or {}).get(version) if version else None
        if version is None or not isinstance(manifest, dict):
            raise InstallFailure(
                f"No version of {name} matches {spec!r}",
                ErrorCode.VERSION_NOT_FOUND,
                recoverable=False,
            )
        dist = manifest.get("dist") or {}
        tarball = dist.get("tarball")
        if not tarball:
            raise InstallFailure(f"{name}@{version} has no tarball", ErrorCode.FETCH_FAILED)
        return ResolvedNode(
            name=name,
            version=version,
            path=path,
            tarball=tarball,
            integrity=dist.get("integrity") or dist.get("shasum"),
            dependencies=dict(manifest.get("dependencies") or {}),
            dev=dev,
        )

    async def resolve(self, roots: Mapping[str, str], dev: set[str]) -> dict[str, ResolvedNode]:
        placed: dict[str, ResolvedNode] = {}
        queue: deque[tuple[str, str, str, bool]] = deque(
            (name, spec, "", name in dev) for name, spec in roots.items()
        )
        while queue:
            name, spec, parent, is_dev = queue.popleft()
            top = _nested_path("", name)
            hoisted = placed.get(top)
            if hoisted is not None and _matches(hoisted.version, spec):
                continue

            path = top if hoisted is None else _nested_path(parent, name)
            if path in placed:
                continue

            node = self._from_lock(name, spec, path, is_dev)
            if node is None:
                node = await self._from_registry(name, spec, path, is_dev)
            if hoisted is not None and hoisted.version == node.version:
                continue

            placed[path] = node
            for dep_name, dep_spec in node.dependencies.items():
                queue.append((dep_name, str(dep_spec), path, is_dev))
        return placed


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


def _member_path(name: str) -> PurePosixPath | None:
    """Strip the leading "package/" directory; reject unsafe paths."""
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise InstallFailure(
            f"Unsafe path in tarball: {name}", ErrorCode.EXTRACT_FAILED, recoverable=False
        )
    parts = path.parts[1:]
    return PurePosixPath(*parts) if parts else None


def extract_tarball(data: bytes, dest: Path) -> None:
    """Extract an npm package tarball (gzip) into ``dest``."""
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive:
                relative = _member_path(member.name)
                if relative is None:
                    continue
                target = dest.joinpath(*relative.parts)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    source = archive.extractfile(member)
                    if source is None:
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with source, target.open("wb") as out:
                        shutil.copyfileobj(source, out)
                else:
                    raise InstallFailure(
                        f"Unsupported tarball member {member.name}",
                        ErrorCode.EXTRACT_FAILED,
                        recoverable=False,
                    )
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise InstallFailure(f"Cannot extract tarball: {exc}", ErrorCode.EXTRACT_FAILED) from exc


def read_tarball_member(data: bytes, member_name: str) -> bytes:
    """Return one file of a package tarball without extracting it."""
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive:
                relative = _member_path(member.name)
                if relative is not None and member.isfile() and relative.as_posix() == member_name:
                    source = archive.extractfile(member)
                    if source is not None:
                        with source:
                            return source.read()
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise InstallFailure(f"Cannot read tarball: {exc}", ErrorCode.EXTRACT_FAILED) from exc
    raise InstallFailure(f"{member_name} not found in tarball", ErrorCode.EXTRACT_FAILED)


@dataclass
class ResolvedProject:
    root: Path
    manifest: dict[str, Any]
    nodes: dict[str, ResolvedNode]
    registry: NpmRegistryClient
    max_concurrent_downloads: int = 8

    def lockfile(self) -> dict[str, Any]:
        root_entry = {
            key: self.manifest[key]
            for key in (PackageType.DEPENDENCY.value, PackageType.DEV_DEPENDENCY.value)
            if self.manifest.get(key)
        }
        packages = {"": root_entry}
        packages.update({path: node.lock_entry() for path, node in sorted(self.nodes.items())})
        return {"lockfileVersion": LOCKFILE_VERSION, "requires": True, "packages": packages}

    def _pending(self) -> list[ResolvedNode]:
        return [
            node
            for node in self.nodes.values()
            if installed_version(self.root, node.path.removeprefix(f"{NODE_MODULES}/"))
            != node.version
        ]

    async def restore(self) -> None:
        pending = await asyncio.to_thread(self._pending)
        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=self.root))
        try:
            staged = await self._stage_all(pending, staging)
        except BaseException:
            await asyncio.to_thread(shutil.rmtree, staging, True)
            raise
        # No suspension points from here on: the commit and its cleanup finish together.
        try:
            self._commit(staged, staging)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        log.info("project_restored", root=str(self.root), fetched=len(pending))

    async def _stage_all(
        self, pending: list[ResolvedNode], staging: Path
    ) -> list[tuple[ResolvedNode, Path]]:
        limit = asyncio.Semaphore(max(1, self.max_concurrent_downloads))

        async def stage(index: int, node: ResolvedNode) -> tuple[ResolvedNode, Path]:
            if not node.tarball:
                raise InstallFailure(f"No tarball recorded for {node.name}@{node.version}")
            async with limit:
                data = await self.registry.fetch_tarball(node.tarball, node.integrity)
            target = staging / f"pkg-{index}"
            await asyncio.to_thread(extract_tarball, data, target)
            return node, target

        tasks = [asyncio.ensure_future(stage(i, n)) for i, n in enumerate(pending)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _commit(self, staged: list[tuple[ResolvedNode, Path]], staging: Path) -> None:
        """Move staged packages into place, then replace manifest and lockfile.

        Every rename is journaled. On failure the journal is replayed backwards
        and the previous manifest and lockfile are put back, so the cache root
        ends up exactly as it was before the call.
        """
        trash = staging / "trash"
        trash.mkdir()
        journal: list[tuple[Path, Path]] = []
        created: list[Path] = []
        documents = {
            path: path.read_bytes() if path.exists() else None
            for path in (self.root / LOCKFILE_NAME, self.root / MANIFEST_NAME)
        }

        def move(source: Path, dest: Path) -> None:
            source.rename(dest)
            journal.append((source, dest))

        try:
            # Parents before nested children
            ordered = sorted(staged, key=lambda s: s[0].path.count("/"))
            for index, (node, source) in enumerate(ordered):
                dest = self.root.joinpath(*node.path.split("/"))
                if dest.exists():
                    kept = dest / NODE_MODULES
                    if kept.is_dir() and not (source / NODE_MODULES).exists():
                        move(kept, source / NODE_MODULES)
                    move(dest, trash / str(index))
                missing = [p for p in reversed(dest.parents) if not p.exists()]
                dest.parent.mkdir(parents=True, exist_ok=True)
                created.extend(missing)
                move(source, dest)

            write_json_atomic(self.root / LOCKFILE_NAME, self.lockfile())
            write_json_atomic(self.root / MANIFEST_NAME, self.manifest)
        except OSError as exc:
            self._rollback(journal, created, documents)
            raise InstallFailure(
                f"Cannot commit packages into {self.root}: {exc}", ErrorCode.INSTALL_FAILED
            ) from exc

    def _rollback(
        self,
        journal: list[tuple[Path, Path]],
        created: list[Path],
        documents: dict[Path, bytes | None],
    ) -> None:
        for source, dest in reversed(journal):
            try:
                dest.rename(source)
            except OSError:
                log.error("commit_rollback_failed", path=str(dest), exc_info=True)
        for directory in reversed(created):
            with contextlib.suppress(OSError):
                directory.rmdir()
        for path, content in documents.items():
            try:
                if content is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(content)
            except OSError:
                log.error("commit_rollback_failed", path=str(path), exc_info=True)
        log.warning("commit_rolled_back", root=str(self.root), moves=len(journal))
