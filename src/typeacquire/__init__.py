"""Automatic acquisition of ambient type declaration packages."""

from __future__ import annotations

from typeacquire.client import AcquisitionClient
from typeacquire.coordinator import RequestCoordinator
from typeacquire.errors import (
    ErrorCode,
    InstallFailure,
    ManifestWriteError,
    ProtocolViolation,
    RegistryUnavailable,
    TypeAcquireError,
    UnsupportedRequest,
)
from typeacquire.installer import InstallWorker
from typeacquire.registry import RegistryCache
from typeacquire.resolver import PackageResolver

__version__ = "0.1.0"

__all__ = [
    "AcquisitionClient",
    "RequestCoordinator",
    "PackageResolver",
    "InstallWorker",
    "RegistryCache",
    "ErrorCode",
    "TypeAcquireError",
    "RegistryUnavailable",
    "ManifestWriteError",
    "InstallFailure",
    "ProtocolViolation",
    "UnsupportedRequest",
]
