"""Command-line entry point.

    python -m typeacquire check lodash left-pad
    python -m typeacquire install ./my-project lodash react/jsx-runtime
    python -m typeacquire cleanup
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from typeacquire.config import Settings
from typeacquire.errors import RegistryUnavailable
from typeacquire.logging_config import configure_logging
from typeacquire.models.install import InstallSucceeded
from typeacquire.models.project import ProjectInfo, TypeAcquisition
from typeacquire.state import open_app_state

if TYPE_CHECKING:
    from typeacquire.models.responses import (
        InvalidateCachedTypings,
        PackageInstalled,
        SetTypings,
    )


class _PrintingProjectService:
    """Writes every response the language service would receive to stdout."""

    def update_typings_for_project(
        self, response: PackageInstalled | SetTypings | InvalidateCachedTypings
    ) -> None:
        print(response.model_dump_json())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="typeacquire", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Report whether names are known typings packages")
    check.add_argument("names", nargs="+")

    install = sub.add_parser("install", help="Acquire typings for a project's imports")
    install.add_argument("project_root", type=Path)
    install.add_argument("imports", nargs="+", help="Unresolved import specifiers")
    install.add_argument("--exclude", action="append", default=[])

    sub.add_parser("cleanup", help="Delete long-expired registry metadata")
    return parser


async def _check(settings: Settings, names: list[str]) -> int:
    async with open_app_state(settings) as state:
        try:
            await state.registry.load()
        except RegistryUnavailable as exc:
            print(f"registry unavailable: {exc.message}", file=sys.stderr)
            return 2
        for name in names:
            known = state.client.is_known_types_package_name(name)
            print(f"{name}\t{'known' if known else 'unknown'}")
    return 0


async def _install(
    settings: Settings, project_root: Path, imports: list[str], exclude: list[str]
) -> int:
    async with open_app_state(settings) as state:
        state.client.attach(_PrintingProjectService())
        project = ProjectInfo(name=str(project_root.resolve()), root=project_root.resolve())
        future = state.client.enqueue_install_typings_request(
            project, TypeAcquisition(exclude=exclude), imports
        )
        if future is None:
            print("nothing to install", file=sys.stderr)
            return 0
        outcome = await future
    return 0 if isinstance(outcome, InstallSucceeded) else 1


async def _cleanup(settings: Settings) -> int:
    async with open_app_state(settings) as state:
        if state.metadata_cache is None:
            raise RuntimeError("cleanup needs an open metadata cache")
        deleted = await state.metadata_cache.cleanup_expired()
        print(f"deleted {deleted} expired entries")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(settings.logging)

    if args.command == "check":
        return asyncio.run(_check(settings, args.names))
    if args.command == "install":
        return asyncio.run(_install(settings, args.project_root, args.imports, args.exclude))
    return asyncio.run(_cleanup(settings))


if __name__ == "__main__":
    sys.exit(main())
