from __future__ import annotations

from typeacquire.models.cache import PackumentCacheEntry
from typeacquire.models.install import (
    CachePurpose,
    InstallFailed,
    InstallOutcome,
    InstallPlan,
    InstallRequest,
    InstallSucceeded,
    RequestState,
    ResolvedPackage,
    next_request_id,
)
from typeacquire.models.project import ProjectInfo, TypeAcquisition
from typeacquire.models.registry import RegistryEntry, RegistryIndex
from typeacquire.models.responses import (
    BeginInstallTypes,
    EndInstallTypes,
    InstallerResponse,
    InvalidateCachedTypings,
    PackageInstalled,
    SetTypings,
)

__all__ = [
    # registry
    "RegistryEntry",
    "RegistryIndex",
    # cache
    "PackumentCacheEntry",
    # project
    "ProjectInfo",
    "TypeAcquisition",
    # install
    "CachePurpose",
    "RequestState",
    "InstallRequest",
    "ResolvedPackage",
    "InstallPlan",
    "InstallSucceeded",
    "InstallFailed",
    "InstallOutcome",
    "next_request_id",
    # responses
    "PackageInstalled",
    "SetTypings",
    "InvalidateCachedTypings",
    "BeginInstallTypes",
    "EndInstallTypes",
    "InstallerResponse",
]
