"""Error taxonomy.

Every failure inside the resolver and the install worker is raised as a
``TypeAcquireError`` subclass and converted to a typed outcome at that
component's boundary. ``ProtocolViolation`` is the exception: it signals a
broken integration and is allowed to propagate.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    REGISTRY_UNAVAILABLE = "REGISTRY_UNAVAILABLE"
    MANIFEST_WRITE_FAILED = "MANIFEST_WRITE_FAILED"
    PACKAGE_NOT_FOUND = "PACKAGE_NOT_FOUND"
    VERSION_NOT_FOUND = "VERSION_NOT_FOUND"
    FETCH_FAILED = "FETCH_FAILED"
    INTEGRITY_MISMATCH = "INTEGRITY_MISMATCH"
    EXTRACT_FAILED = "EXTRACT_FAILED"
    INSTALL_TIMEOUT = "INSTALL_TIMEOUT"
    INSTALL_FAILED = "INSTALL_FAILED"
    UNSUPPORTED_REQUEST = "UNSUPPORTED_REQUEST"
    PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"


class TypeAcquireError(Exception):
    """Base error carrying a machine-readable code and a recoverability hint."""

    def __init__(self, code: ErrorCode, message: str, recoverable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class RegistryUnavailable(TypeAcquireError):
    """The registry index could not be loaded. Lookups degrade to "unknown"."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.REGISTRY_UNAVAILABLE, message, recoverable=True)


class ManifestWriteError(TypeAcquireError):
    """The cache-root manifest could not be created or read."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.MANIFEST_WRITE_FAILED, message)


class InstallFailure(TypeAcquireError):
    """Fetch, dependency-resolution or disk error while restoring packages."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INSTALL_FAILED,
        recoverable: bool = True,
    ) -> None:
        super().__init__(code, message, recoverable=recoverable)


class UnsupportedRequest(TypeAcquireError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.UNSUPPORTED_REQUEST, message)


class ProtocolViolation(TypeAcquireError):
    """An outcome or response kind nobody on this side understands."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.PROTOCOL_VIOLATION, message)
