from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class ProjectInfo(BaseModel):
    """What the language service tells us about a project issuing requests."""

    model_config = ConfigDict(frozen=True)

    name: str
    root: Path


class TypeAcquisition(BaseModel):
    """Per-project type acquisition settings."""

    enable: bool = True
    include: list[str] = []
    exclude: list[str] = []
