"""Request coordinator: serializes install work per cache root.

Each cache root has a FIFO queue drained by a single task, so at most one
InstallWorker execution touches a cache root at any time while different
roots proceed concurrently. Per request the coordinator walks

    queued -> resolving -> installing -> completed | failed

and emits the response protocol: ``BeginInstallTypes`` before planning,
``EndInstallTypes`` once the outcome is known, one ``PackageInstalled`` per
requested package, and ``SetTypings`` after a successful install. Failed
requests are never retried here.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from typeacquire.errors import ErrorCode, ProtocolViolation, TypeAcquireError
from typeacquire.manifest import package_dir
from typeacquire.models.install import InstallFailed, InstallSucceeded, RequestState
from typeacquire.models.responses import (
    BeginInstallTypes,
    EndInstallTypes,
    InvalidateCachedTypings,
    PackageInstalled,
    SetTypings,
)
from typeacquire.names import types_package_name

if TYPE_CHECKING:
    from pathlib import Path

    from typeacquire.installer import InstallWorker
    from typeacquire.models.install import InstallOutcome, InstallPlan, InstallRequest
    from typeacquire.models.responses import InstallerResponse
    from typeacquire.resolver import PackageResolver

log = structlog.get_logger()

ResponseSink = Callable[["InstallerResponse"], None]


@dataclass
class _Pending:
    request: InstallRequest
    future: asyncio.Future[InstallOutcome]


class RequestCoordinator:
    def __init__(
        self,
        resolver: PackageResolver,
        worker: InstallWorker,
        respond: ResponseSink,
    ) -> None:
        self._resolver = resolver
        self._worker = worker
        self._respond = respond
        self._queues: dict[Path, deque[_Pending]] = {}
        self._drains: dict[Path, asyncio.Task[None]] = {}
        self._states: dict[int, RequestState] = {}

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def cache_root_for(self, request: InstallRequest) -> Path:
        # Every request acquires global typings; there is one root per resolver.
        return self._resolver.cache_root

    def enqueue(self, request: InstallRequest) -> asyncio.Future[InstallOutcome]:
        """Queue a request and return a future for its outcome. Never blocks."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[InstallOutcome] = loop.create_future()
        root = self.cache_root_for(request)

        queue = self._queues.setdefault(root, deque())
        queue.append(_Pending(request, future))
        self._states[request.id] = RequestState.QUEUED
        log.info(
            "request_queued",
            request_id=request.id,
            project=request.project_name,
            packages=list(request.package_names),
            position=len(queue),
        )

        if root not in self._drains:
            self._drains[root] = loop.create_task(self._drain(root))
        return future

    def state_of(self, request_id: int) -> RequestState | None:
        return self._states.get(request_id)

    def pending(self, cache_root: Path | None = None) -> int:
        """Number of queued (not yet started) requests."""
        if cache_root is not None:
            return len(self._queues.get(cache_root, ()))
        return sum(len(q) for q in self._queues.values())

    def busy(self, cache_root: Path) -> bool:
        return cache_root in self._drains

    def cancel_pending(self, project_name: str) -> int:
        """Drop queued requests of ``project_name``. In-flight work runs to completion."""
        cancelled = 0
        for queue in self._queues.values():
            keep = deque(p for p in queue if p.request.project_name != project_name)
            for dropped in (p for p in queue if p.request.project_name == project_name):
                dropped.future.cancel()
                self._states.pop(dropped.request.id, None)
                cancelled += 1
            queue.clear()
            queue.extend(keep)
        if cancelled:
            log.info("requests_cancelled", project=project_name, count=cancelled)
        return cancelled

    def invalidate(self, project_name: str) -> None:
        self._respond(InvalidateCachedTypings(project_name=project_name))

    async def join(self) -> None:
        """Wait until every queue is drained."""
        while self._drains:
            await asyncio.gather(*self._drains.values(), return_exceptions=True)

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    async def _drain(self, root: Path) -> None:
        queue = self._queues[root]
        try:
            while queue:
                await self._process(queue.popleft())
        finally:
            self._drains.pop(root, None)
            if not queue:
                self._queues.pop(root, None)

    async def _process(self, pending: _Pending) -> None:
        request = pending.request
        try:
            outcome = await self._run(request)
        except Exception as exc:
            # Raised while delivering responses: a broken integration, not an install failure.
            self._states[request.id] = RequestState.FAILED
            log.error("response_delivery_failed", request_id=request.id, exc_info=True)
            if not pending.future.done():
                pending.future.set_exception(exc)
            return
        if not pending.future.done():
            pending.future.set_result(outcome)

    async def _run(self, request: InstallRequest) -> InstallOutcome:
        packages = list(request.package_names)
        self._states[request.id] = RequestState.RESOLVING
        self._respond(
            BeginInstallTypes(
                event_id=request.id, project_name=request.project_name, packages=packages
            )
        )

        plan: InstallPlan | None = None
        try:
            plan = await self._resolver.plan(
                request.project_root, request.package_names, request_id=request.id
            )
        except TypeAcquireError as exc:
            outcome: InstallOutcome = InstallFailed(
                request_id=request.id, code=exc.code, reason=exc.message
            )
        except Exception as exc:
            log.error("plan_failed", request_id=request.id, exc_info=True)
            outcome = InstallFailed(
                request_id=request.id, code=ErrorCode.INSTALL_FAILED, reason=str(exc)
            )
        else:
            self._states[request.id] = RequestState.INSTALLING
            outcome = await self._worker.execute(plan)

        typings = await asyncio.to_thread(self._typings_for, plan) if plan is not None else []
        self._reply(request, outcome, typings)
        return outcome

    def _typings_for(self, plan: InstallPlan) -> list[str]:
        names = [p.name for p in plan.resolved_packages] + list(plan.skipped)
        paths = (package_dir(plan.target_cache_root, types_package_name(n)) for n in names)
        return sorted(str(path) for path in paths if path.is_dir())

    def _reply(
        self,
        request: InstallRequest,
        outcome: InstallOutcome,
        typings: list[str],
    ) -> None:
        if isinstance(outcome, InstallSucceeded):
            success, message = True, ""
        elif isinstance(outcome, InstallFailed):
            success, message = False, outcome.reason
        else:
            raise ProtocolViolation(f"Unknown install outcome: {outcome!r}")

        self._states[request.id] = RequestState.COMPLETED if success else RequestState.FAILED
        requested = list(request.package_names)
        self._respond(
            EndInstallTypes(
                event_id=request.id,
                project_name=request.project_name,
                packages=requested,
                success=success,
            )
        )

        for name in requested:
            self._respond(
                PackageInstalled(
                    project_name=request.project_name,
                    success=success,
                    package_name=name,
                    message=message,
                )
            )

        if success:
            self._respond(
                SetTypings(
                    project_name=request.project_name,
                    typings=typings,
                    unresolved_imports=requested,
                )
            )
        log.info(
            "request_finished",
            request_id=request.id,
            project=request.project_name,
            success=success,
            reason=message or None,
        )
