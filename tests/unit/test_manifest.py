"""Unit tests for cache-root manifest and lockfile I/O."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from typeacquire.errors import ErrorCode, ManifestWriteError
from typeacquire.manifest import (
    MINIMAL_MANIFEST,
    declared_dependencies,
    ensure_manifest,
    installed_version,
    lockfile_path,
    manifest_path,
    package_dir,
    read_lockfile,
    read_manifest,
    write_json_atomic,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestEnsureManifest:
    def test_creates_minimal_manifest(self, cache_root: Path) -> None:
        assert ensure_manifest(cache_root) is True
        assert read_manifest(cache_root) == MINIMAL_MANIFEST

    def test_existing_manifest_is_untouched(self, cache_root: Path) -> None:
        manifest_path(cache_root).write_text('{"devDependencies": {"@types/x": "1.0.0"}}')
        assert ensure_manifest(cache_root) is False
        assert read_manifest(cache_root) == {"devDependencies": {"@types/x": "1.0.0"}}

    def test_unwritable_root_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(ManifestWriteError) as exc_info:
            ensure_manifest(blocker / "root")
        assert exc_info.value.code is ErrorCode.MANIFEST_WRITE_FAILED


class TestReadManifest:
    def test_corrupt_manifest_raises(self, cache_root: Path) -> None:
        manifest_path(cache_root).write_text("{broken")
        with pytest.raises(ManifestWriteError):
            read_manifest(cache_root)

    def test_non_object_manifest_raises(self, cache_root: Path) -> None:
        manifest_path(cache_root).write_text("[]")
        with pytest.raises(ManifestWriteError):
            read_manifest(cache_root)


class TestLockfile:
    def test_missing_lockfile_is_empty(self, cache_root: Path) -> None:
        assert read_lockfile(cache_root) == {}

    def test_corrupt_lockfile_is_empty(self, cache_root: Path) -> None:
        lockfile_path(cache_root).write_text("nope")
        assert read_lockfile(cache_root) == {}


class TestHelpers:
    def test_write_json_atomic_leaves_no_temp_files(self, cache_root: Path) -> None:
        target = cache_root / "nested" / "doc.json"
        write_json_atomic(target, {"b": 1, "a": 2})
        assert json.loads(target.read_text()) == {"a": 2, "b": 1}
        assert [p.name for p in target.parent.iterdir()] == ["doc.json"]

    def test_installed_version(self, cache_root: Path) -> None:
        target = package_dir(cache_root, "@types/lodash")
        assert target == cache_root / "node_modules" / "@types" / "lodash"
        assert installed_version(cache_root, "@types/lodash") is None
        target.mkdir(parents=True)
        (target / "package.json").write_text('{"version": "4.17.21"}')
        assert installed_version(cache_root, "@types/lodash") == "4.17.21"

    def test_declared_dependencies_merges_sections(self) -> None:
        manifest = {
            "dependencies": {"a": "1.0.0", "b": "1.0.0"},
            "devDependencies": {"b": "2.0.0"},
        }
        assert declared_dependencies(manifest) == {"a": "1.0.0", "b": "2.0.0"}
