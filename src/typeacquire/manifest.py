"""Cache-root manifest and lockfile I/O.

Plain synchronous helpers; async callers run them through
``asyncio.to_thread``. Writes go through a temporary file and
``os.replace`` so readers see either the old or the new document.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from typeacquire.errors import ManifestWriteError

MANIFEST_NAME = "package.json"
LOCKFILE_NAME = "package-lock.json"
NODE_MODULES = "node_modules"

MINIMAL_MANIFEST: dict[str, Any] = {"private": True}


def manifest_path(root: Path) -> Path:
    return root / MANIFEST_NAME


def lockfile_path(root: Path) -> Path:
    return root / LOCKFILE_NAME


def package_dir(root: Path, package_name: str) -> Path:
    return root / NODE_MODULES / Path(*package_name.split("/"))


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.write("\n")
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def ensure_manifest(root: Path) -> bool:
    """Create a minimal manifest if none exists. Returns True when created."""
    path = manifest_path(root)
    if path.exists():
        return False
    try:
        write_json_atomic(path, MINIMAL_MANIFEST)
    except OSError as exc:
        raise ManifestWriteError(f"Cannot create manifest at {path}: {exc}") from exc
    return True


def read_manifest(root: Path) -> dict[str, Any]:
    path = manifest_path(root)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ManifestWriteError(f"Cannot read manifest at {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ManifestWriteError(f"Manifest at {path} is not a JSON object")
    return payload


def read_lockfile(root: Path) -> dict[str, Any]:
    """Return the lockfile, or an empty one when it is missing or unreadable."""
    path = lockfile_path(root)
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def installed_version(root: Path, package_name: str) -> str | None:
    """Version of ``package_name`` present under ``node_modules``, if any."""
    path = package_dir(root, package_name) / MANIFEST_NAME
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    version = payload.get("version")
    return version if isinstance(version, str) else None


def declared_dependencies(manifest: dict[str, Any]) -> dict[str, str]:
    """Merge dependencies and devDependencies of a manifest (dev wins)."""
    merged: dict[str, str] = {}
    for key in ("dependencies", "devDependencies"):
        section = manifest.get(key)
        if isinstance(section, dict):
            merged.update({str(k): str(v) for k, v in section.items()})
    return merged
