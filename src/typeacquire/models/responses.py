"""Responses relayed from the coordinator to the language service.

The kinds mirror the message protocol of an out-of-process typings
installer, kept as an explicit tagged union even though everything runs in
one process.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field


class PackageInstalled(BaseModel):
    kind: Literal["action::packageInstalled"] = "action::packageInstalled"
    project_name: str
    success: bool
    package_name: str
    message: str = ""


class SetTypings(BaseModel):
    kind: Literal["action::set"] = "action::set"
    project_name: str
    typings: list[str]  # Declaration directories inside the cache root
    unresolved_imports: list[str] = []


class InvalidateCachedTypings(BaseModel):
    kind: Literal["action::invalidate"] = "action::invalidate"
    project_name: str


class BeginInstallTypes(BaseModel):
    kind: Literal["event::beginInstallTypes"] = "event::beginInstallTypes"
    event_id: int
    project_name: str
    packages: list[str]


class EndInstallTypes(BaseModel):
    kind: Literal["event::endInstallTypes"] = "event::endInstallTypes"
    event_id: int
    project_name: str
    packages: list[str]
    success: bool


InstallerResponse = Annotated[
    PackageInstalled | SetTypings | InvalidateCachedTypings | BeginInstallTypes | EndInstallTypes,
    Field(discriminator="kind"),
]
