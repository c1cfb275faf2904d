"""Test doubles shared by the unit and integration suites."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import io
import json
import tarfile
from typing import TYPE_CHECKING, Any

import httpx

from typeacquire.errors import ErrorCode, InstallFailure, RegistryUnavailable
from typeacquire.manifest import manifest_path, package_dir, write_json_atomic
from typeacquire.models.registry import RegistryIndex

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from typeacquire.npm import PackageType
SAMPLE_ENTRIES: dict[str, dict[str, str]] = {
    "lodash": {"latest": "4.17.21", "ts5.4": "4.17.20"},
    "left-pad": {"latest": "1.3.0"},
    "react": {"latest": "18.3.1", "ts5.4": "18.3.1"},
    "node": {"latest": "20.11.0"},
    "babel__core": {"latest": "7.20.5"},
    "does-not-exist": {"latest": "1.0.0"},
}


class StaticLoader:
    """Index loader returning a fixed index, optionally failing or gated."""

    def __init__(
        self,
        entries: Mapping[str, Mapping[str, str]] | None = None,
        *,
        fail: bool = False,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.entries = dict(SAMPLE_ENTRIES if entries is None else entries)
        self.fail = fail
        self.gate = gate
        self.calls = 0

    async def __call__(self) -> RegistryIndex:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RegistryUnavailable("registry offline")
        return RegistryIndex(entries=self.entries)


class FakeResolvedProject:
    def __init__(
        self,
        manager: FakePackageManager,
        root: Path,
        add_packages: dict[str, str],
        package_type: PackageType,
    ) -> None:
        self._manager = manager
        self._root = root
        self._add = add_packages
        self._section = package_type.value

    async def restore(self) -> None:
        manager = self._manager
        manager.active += 1
        manager.max_active = max(manager.max_active, manager.active)
        try:
            await asyncio.sleep(manager.delay)
            failing = sorted(name for name in self._add if name in manager.fail)
            if failing:
                raise InstallFailure(
                    f"Package {failing[0]} does not exist in the registry",
                    ErrorCode.PACKAGE_NOT_FOUND,
                )
            manifest = json.loads(manifest_path(self._root).read_text(encoding="utf-8"))
            section = manifest.setdefault(self._section, {})
            for name, spec in self._add.items():
                version = spec if spec[:1].isdigit() else "1.0.0"
                target = package_dir(self._root, name)
                target.mkdir(parents=True, exist_ok=True)
                (target / "package.json").write_text(
                    json.dumps({"name": name, "version": version}), encoding="utf-8"
                )
                (target / "index.d.ts").write_text(f"// {name}\n", encoding="utf-8")
                section[name] = version
                manager.writes.append(name)
            write_json_atomic(manifest_path(self._root), manifest)
        finally:
            manager.active -= 1


class FakePackageManager:
    """Writes declaration stubs instead of talking to a registry."""

    def __init__(self, *, fail: set[str] | None = None, delay: float = 0.0) -> None:
        self.fail = set(fail or ())
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.calls: list[dict[str, str]] = []
        self.writes: list[str] = []

    async def resolve_project(
        self,
        root: Path,
        *,
        add_packages: Mapping[str, str],
        package_type: PackageType,
    ) -> FakeResolvedProject:
        self.calls.append(dict(add_packages))
        return FakeResolvedProject(self, root, dict(add_packages), package_type)


class RecordingProjectService:
    def __init__(self) -> None:
        self.responses: list[Any] = []

    def update_typings_for_project(self, response: Any) -> None:
        self.responses.append(response)


# ---------------------------------------------------------------------------
# npm registry served through respx
# ---------------------------------------------------------------------------

REGISTRY_URL = "https://registry.test"


def make_tarball(files: Mapping[str, str | bytes], prefix: str = "package") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{prefix}/{name}" if prefix else name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def sri(data: bytes) -> str:
    return "sha512-" + base64.b64encode(hashlib.sha512(data).digest()).decode("ascii")


class FakeNpmRegistry:
    """In-memory npm registry; mount ``handle`` as a respx side effect."""

    def __init__(self, base_url: str = REGISTRY_URL) -> None:
        self.base_url = base_url
        self.versions: dict[str, dict[str, dict[str, Any]]] = {}
        self.tags: dict[str, dict[str, str]] = {}
        self.tarballs: dict[str, bytes] = {}
        self.requests: list[str] = []

    def publish(
        self,
        name: str,
        version: str,
        dependencies: Mapping[str, str] | None = None,
        files: Mapping[str, str | bytes] | None = None,
    ) -> None:
        if files is None:
            files = {
                "package.json": json.dumps({"name": name, "version": version}),
                "index.d.ts": f"// {name}@{version}\n",
            }
        data = make_tarball(files)
        key = f"{name}/-/{name.rpartition('/')[2]}-{version}.tgz"
        self.tarballs[key] = data
        self.versions.setdefault(name, {})[version] = {
            "name": name,
            "version": version,
            "dependencies": dict(dependencies or {}),
            "dist": {"tarball": f"{self.base_url}/{key}", "integrity": sri(data)},
        }
        self.tags.setdefault(name, {})["latest"] = version

    def corrupt(self, name: str, version: str) -> None:
        key = f"{name}/-/{name.rpartition('/')[2]}-{version}.tgz"
        self.tarballs[key] = make_tarball({"index.d.ts": "tampered"})

    def packument(self, name: str) -> dict[str, Any]:
        return {"name": name, "dist-tags": self.tags[name], "versions": self.versions[name]}

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.lstrip("/")
        self.requests.append(path)
        if "/-/" in path:
            data = self.tarballs.get(path)
            if data is None:
                return httpx.Response(404)
            return httpx.Response(200, content=data)
        if path in self.versions:
            return httpx.Response(200, json=self.packument(path))
        return httpx.Response(404, json={"error": "Not found"})
