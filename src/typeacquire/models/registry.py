from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, field_validator


class RegistryEntry(BaseModel):
    """Dist-tags of one declaration package, keyed by its typing name."""

    name: str
    tags: dict[str, str] = {}

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: dict[str, str]) -> dict[str, str]:
        return {str(tag): str(version) for tag, version in v.items()}

    @property
    def latest(self) -> str | None:
        return self.tags.get("latest")


@dataclass(frozen=True)
class RegistryIndex:
    """Immutable snapshot of the types registry.

    Replaced wholesale on reload; readers holding a reference keep a
    consistent view while a new snapshot is being built.
    """

    # typing name -> {dist-tag: version}  e.g. "lodash" -> {"latest": "4.17.21"}
    entries: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    source: Literal["network", "snapshot"] = "network"

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, name: str) -> RegistryEntry | None:
        tags = self.entries.get(name)
        if tags is None:
            return None
        return RegistryEntry(name=name, tags=dict(tags))

    def version_for(self, name: str, typescript_version: str) -> str | None:
        """Pick the dist-tag matching the TypeScript version, else ``latest``."""
        tags = self.entries.get(name)
        if tags is None:
            return None
        return tags.get(f"ts{typescript_version}") or tags.get("latest")
