"""Boundary protocols for the collaborators the acquisition engine talks to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from typeacquire.models.responses import (
        InvalidateCachedTypings,
        PackageInstalled,
        SetTypings,
    )
    from typeacquire.npm import PackageType


class ResolvedProjectHandle(Protocol):
    async def restore(self) -> None:
        """Fetch and materialize the resolved tree. Raises on failure."""
        ...


class PackageManager(Protocol):
    async def resolve_project(
        self,
        root: Path,
        *,
        add_packages: Mapping[str, str],
        package_type: PackageType,
    ) -> ResolvedProjectHandle: ...


class ProjectService(Protocol):
    """The language service side that applies completed installs to projects."""

    def update_typings_for_project(
        self, response: PackageInstalled | SetTypings | InvalidateCachedTypings
    ) -> None: ...
