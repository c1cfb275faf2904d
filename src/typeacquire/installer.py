"""Install worker: executes one InstallPlan against the cache root.

``execute`` never raises. Fetch, integrity, disk and timeout failures all
come back as ``InstallFailed`` so the coordinator can keep draining its
queue.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from typeacquire.errors import ErrorCode, TypeAcquireError
from typeacquire.models.install import InstallFailed, InstallSucceeded
from typeacquire.npm import PackageType

if TYPE_CHECKING:
    from typeacquire.models.install import InstallOutcome, InstallPlan
    from typeacquire.protocols import PackageManager

log = structlog.get_logger()


class InstallWorker:
    def __init__(
        self, package_manager: PackageManager, timeout_seconds: float | None = None
    ) -> None:
        self._package_manager = package_manager
        self._timeout = timeout_seconds
        self.active = 0
        self.max_active = 0
        self.executions = 0

    async def _install(self, plan: InstallPlan) -> None:
        add_packages = {p.package_name: p.version_range for p in plan.resolved_packages}
        resolved = await self._package_manager.resolve_project(
            plan.target_cache_root,
            add_packages=add_packages,
            package_type=PackageType.DEV_DEPENDENCY,
        )
        await resolved.restore()

    async def execute(self, plan: InstallPlan) -> InstallOutcome:
        if plan.is_empty:
            return InstallSucceeded(request_id=plan.request_id)

        packages = [p.package_name for p in plan.resolved_packages]
        self.active += 1
        self.executions += 1
        self.max_active = max(self.max_active, self.active)
        log.info(
            "install_started",
            request_id=plan.request_id,
            cache_root=str(plan.target_cache_root),
            packages=packages,
        )
        try:
            async with asyncio.timeout(self._timeout):
                await self._install(plan)
        except TimeoutError:
            log.warning("install_timeout", request_id=plan.request_id, timeout=self._timeout)
            return InstallFailed(
                request_id=plan.request_id,
                code=ErrorCode.INSTALL_TIMEOUT,
                reason=f"Install did not finish within {self._timeout}s",
            )
        except TypeAcquireError as exc:
            log.warning(
                "install_failed", request_id=plan.request_id, code=exc.code, error=exc.message
            )
            return InstallFailed(request_id=plan.request_id, code=exc.code, reason=exc.message)
        except Exception as exc:
            log.error("install_failed", request_id=plan.request_id, exc_info=True)
            return InstallFailed(request_id=plan.request_id, reason=f"{type(exc).__name__}: {exc}")
        finally:
            self.active -= 1

        log.info("install_completed", request_id=plan.request_id, packages=packages)
        return InstallSucceeded(request_id=plan.request_id, installed=tuple(packages))
