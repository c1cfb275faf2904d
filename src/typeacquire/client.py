"""Acquisition client: the surface the language service talks to.

Every entry point returns immediately. Registry loads and installs run as
tasks on the event loop and report back through ``on_response``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from typeacquire.discovery import typing_names_for
from typeacquire.errors import ProtocolViolation, UnsupportedRequest
from typeacquire.models.install import CachePurpose, InstallRequest
from typeacquire.models.responses import (
    BeginInstallTypes,
    EndInstallTypes,
    InvalidateCachedTypings,
    PackageInstalled,
    SetTypings,
)

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Iterable

    from typeacquire.coordinator import RequestCoordinator
    from typeacquire.models.install import InstallOutcome
    from typeacquire.models.project import ProjectInfo, TypeAcquisition
    from typeacquire.models.responses import InstallerResponse
    from typeacquire.protocols import ProjectService
    from typeacquire.registry import RegistryCache

log = structlog.get_logger()


class AcquisitionClient:
    def __init__(self, registry: RegistryCache) -> None:
        self._registry = registry
        self._coordinator: RequestCoordinator | None = None
        self._project_service: ProjectService | None = None
        self._projects: set[str] = set()

    def bind(self, coordinator: RequestCoordinator) -> None:
        """Connect the coordinator whose responses arrive at ``on_response``."""
        self._coordinator = coordinator

    @property
    def coordinator(self) -> RequestCoordinator:
        if self._coordinator is None:
            raise RuntimeError("AcquisitionClient is not bound to a RequestCoordinator")
        return self._coordinator

    # ------------------------------------------------------------------
    # Inbound from the language service
    # ------------------------------------------------------------------

    def attach(self, project_service: ProjectService) -> None:
        self._project_service = project_service

    def is_known_types_package_name(self, name: str) -> bool:
        return self._registry.is_known_types_package(name)

    def enqueue_install_typings_request(
        self,
        project: ProjectInfo,
        type_acquisition: TypeAcquisition | None,
        unresolved_imports: Iterable[str],
    ) -> asyncio.Future[InstallOutcome] | None:
        """Fire-and-forget install of the typings a project is missing.

        Returns the outcome future for callers that want it, or ``None`` when
        there is nothing to acquire.
        """
        imports = sorted(unresolved_imports)
        names = typing_names_for(imports, type_acquisition)
        if not names:
            log.debug("install_request_skipped", project=project.name, imports=len(imports))
            return None

        request = InstallRequest(
            project_name=project.name,
            project_root=project.root,
            package_names=tuple(names),
            cache_purpose=CachePurpose.GLOBAL_TYPINGS,
        )
        self._projects.add(project.name)
        return self.coordinator.enqueue(request)

    def on_project_closed(self, project: ProjectInfo) -> None:
        self._projects.discard(project.name)
        if self._coordinator is not None:
            self._coordinator.cancel_pending(project.name)

    async def install_package(self, options: Any) -> None:
        """Installing an exact package into a project is outside typings acquisition."""
        raise UnsupportedRequest("install_package is not supported by the typings installer")

    def refresh_registry(self) -> None:
        """Reload the types registry and tell every known project to drop cached typings."""
        self._registry.invalidate()
        for project_name in sorted(self._projects):
            self.coordinator.invalidate(project_name)

    # ------------------------------------------------------------------
    # Outbound to the language service
    # ------------------------------------------------------------------

    def on_response(self, response: InstallerResponse) -> None:
        if isinstance(response, PackageInstalled | SetTypings | InvalidateCachedTypings):
            if self._project_service is None:
                log.warning("response_dropped_unattached", kind=response.kind)
                return
            self._project_service.update_typings_for_project(response)
        elif isinstance(response, BeginInstallTypes):
            log.info(
                "typings_install_begin", project=response.project_name, packages=response.packages
            )
        elif isinstance(response, EndInstallTypes):
            log.info(
                "typings_install_end",
                project=response.project_name,
                packages=response.packages,
                success=response.success,
            )
        else:
            raise ProtocolViolation(f"unexpected response: {response!r}")
