from __future__ import annotations

import itertools
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from typeacquire.errors import ErrorCode
from typeacquire.names import types_package_name

_request_ids = itertools.count(1)


def next_request_id() -> int:
    return next(_request_ids)


class CachePurpose(StrEnum):
    GLOBAL_TYPINGS = "global_typings"


class RequestState(StrEnum):
    QUEUED = "queued"
    RESOLVING = "resolving"
    INSTALLING = "installing"
    COMPLETED = "completed"
    FAILED = "failed"


class InstallRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(default_factory=next_request_id)
    project_name: str
    project_root: Path
    package_names: tuple[str, ...]
    cache_purpose: CachePurpose = CachePurpose.GLOBAL_TYPINGS
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ResolvedPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str  # Typing name, e.g. "lodash"
    version_range: str  # Dist-tag or semver range

    @property
    def package_name(self) -> str:
        return types_package_name(self.name)


class InstallPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: int
    resolved_packages: tuple[ResolvedPackage, ...] = ()
    # Typing names already present in the cache root
    skipped: tuple[str, ...] = ()
    target_cache_root: Path

    @field_validator("resolved_packages")
    @classmethod
    def validate_unique(cls, v: tuple[ResolvedPackage, ...]) -> tuple[ResolvedPackage, ...]:
        names = [p.name for p in v]
        if len(names) != len(set(names)):
            raise ValueError("resolved_packages must not repeat a package")
        return v

    @property
    def is_empty(self) -> bool:
        return not self.resolved_packages


class InstallSucceeded(BaseModel):
    kind: Literal["success"] = "success"
    request_id: int
    installed: tuple[str, ...] = ()


class InstallFailed(BaseModel):
    kind: Literal["failure"] = "failure"
    request_id: int
    code: ErrorCode = ErrorCode.INSTALL_FAILED
    reason: str


InstallOutcome = Annotated[InstallSucceeded | InstallFailed, Field(discriminator="kind")]
