"""Unit tests for the acquisition client facade."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.fakes import RecordingProjectService
from typeacquire.client import AcquisitionClient
from typeacquire.errors import ProtocolViolation, UnsupportedRequest
from typeacquire.models.install import InstallSucceeded
from typeacquire.models.project import ProjectInfo, TypeAcquisition
from typeacquire.models.responses import (
    BeginInstallTypes,
    InvalidateCachedTypings,
    PackageInstalled,
    SetTypings,
)
from typeacquire.state import AppState, build_app_state

if TYPE_CHECKING:
    from pathlib import Path

    from tests.fakes import FakePackageManager, StaticLoader
    from typeacquire.config import Settings
    from typeacquire.registry import RegistryCache


@pytest.fixture()
def app_state(
    settings: Settings, package_manager: FakePackageManager, loader: StaticLoader
) -> AppState:
    return build_app_state(settings, package_manager=package_manager, index_loader=loader)


@pytest.fixture()
def service(app_state: AppState) -> RecordingProjectService:
    recorder = RecordingProjectService()
    app_state.client.attach(recorder)
    return recorder


@pytest.fixture()
def project(tmp_path: Path) -> ProjectInfo:
    return ProjectInfo(name="/work/app/tsconfig.json", root=tmp_path / "app")


class TestEnqueue:
    async def test_forwards_project_actions(
        self, app_state: AppState, service: RecordingProjectService, project: ProjectInfo
    ) -> None:
        future = app_state.client.enqueue_install_typings_request(
            project, None, ["lodash/fp", "./local", "fs"]
        )
        assert future is not None
        outcome = await future

        assert isinstance(outcome, InstallSucceeded)
        assert outcome.installed == ("@types/lodash", "@types/node")
        kinds = [r.kind for r in service.responses]
        assert kinds == ["action::packageInstalled", "action::packageInstalled", "action::set"]
        assert all(r.project_name == project.name for r in service.responses)

    async def test_nothing_to_acquire_returns_none(
        self, app_state: AppState, package_manager: FakePackageManager, project: ProjectInfo
    ) -> None:
        assert app_state.client.enqueue_install_typings_request(project, None, ["./x"]) is None
        disabled = TypeAcquisition(enable=False)
        assert app_state.client.enqueue_install_typings_request(project, disabled, ["a"]) is None
        assert package_manager.calls == []

    async def test_project_closed_cancels_queued_work(
        self, app_state: AppState, package_manager: FakePackageManager, project: ProjectInfo
    ) -> None:
        future = app_state.client.enqueue_install_typings_request(project, None, ["lodash"])
        assert future is not None
        app_state.client.on_project_closed(project)
        await app_state.coordinator.join()
        assert future.cancelled()
        assert package_manager.calls == []


class TestLookups:
    async def test_is_known_types_package_name(self, app_state: AppState) -> None:
        assert app_state.client.is_known_types_package_name("lodash") is False
        await app_state.registry.load()
        assert app_state.client.is_known_types_package_name("lodash") is True
        assert app_state.client.is_known_types_package_name("///not-a-name") is False

    async def test_refresh_registry_invalidates_known_projects(
        self,
        app_state: AppState,
        service: RecordingProjectService,
        project: ProjectInfo,
        loader: StaticLoader,
    ) -> None:
        future = app_state.client.enqueue_install_typings_request(project, None, ["react"])
        assert future is not None
        await future
        service.responses.clear()

        app_state.client.refresh_registry()

        assert service.responses == [InvalidateCachedTypings(project_name=project.name)]
        await app_state.registry.load()
        assert loader.calls == 2


class TestResponseRouting:
    def test_unknown_response_kind_is_a_protocol_violation(self, registry: RegistryCache) -> None:
        client = AcquisitionClient(registry)
        client.attach(RecordingProjectService())
        with pytest.raises(ProtocolViolation):
            client.on_response(object())  # type: ignore[arg-type]

    def test_events_are_not_forwarded(self, registry: RegistryCache) -> None:
        client = AcquisitionClient(registry)
        recorder = RecordingProjectService()
        client.attach(recorder)

        client.on_response(BeginInstallTypes(event_id=1, project_name="p", packages=["x"]))
        client.on_response(SetTypings(project_name="p", typings=[]))

        assert [r.kind for r in recorder.responses] == ["action::set"]

    def test_unattached_client_drops_actions(self, registry: RegistryCache) -> None:
        client = AcquisitionClient(registry)
        client.on_response(
            PackageInstalled(project_name="p", success=True, package_name="lodash")
        )

    def test_unbound_client_has_no_coordinator(self, registry: RegistryCache) -> None:
        with pytest.raises(RuntimeError):
            AcquisitionClient(registry).coordinator


class TestUnsupported:
    async def test_install_package_is_rejected(self, app_state: AppState) -> None:
        with pytest.raises(UnsupportedRequest):
            await app_state.client.install_package({"packageName": "lodash"})
