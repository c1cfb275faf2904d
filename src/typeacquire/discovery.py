"""Derive typing names from a project's unresolved imports."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from typeacquire.names import mangle_scoped_package_name

if TYPE_CHECKING:
    from typeacquire.models.project import TypeAcquisition

NODE_TYPING_NAME = "node"

NODE_CORE_MODULES = frozenset(
    {
        "assert", "assert/strict", "async_hooks", "buffer", "child_process", "cluster",
        "console", "constants", "crypto", "dgram", "diagnostics_channel", "dns",
        "dns/promises", "domain", "events", "fs", "fs/promises", "http", "http2",
        "https", "inspector", "module", "net", "os", "path", "path/posix", "path/win32",
        "perf_hooks", "process", "punycode", "querystring", "readline",
        "readline/promises", "repl", "stream", "stream/consumers", "stream/promises",
        "stream/web", "string_decoder", "sys", "test", "timers", "timers/promises",
        "tls", "trace_events", "tty", "url", "util", "util/types", "v8", "vm", "wasi",
        "worker_threads", "zlib",
    }
)  # fmt: skip


def module_to_package_name(module_name: str) -> str | None:
    """Map an import specifier to the package that provides it.

    ``lodash/fp`` -> ``lodash``, ``@scope/pkg/sub`` -> ``@scope/pkg``.
    Relative and absolute specifiers return ``None``.
    """
    name = module_name.strip()
    if not name or name.startswith((".", "/")):
        return None
    # URL-like specifiers ("https://...", "virtual:x") never map to a package
    if ":" in name and not name.startswith("node:"):
        return None
    if name.startswith("node:") or name in NODE_CORE_MODULES:
        return NODE_TYPING_NAME

    parts = name.split("/")
    if name.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        package = f"{parts[0]}/{parts[1]}"
    else:
        package = parts[0]

    if package in NODE_CORE_MODULES:
        return NODE_TYPING_NAME
    return package


def typing_names_for(
    unresolved_imports: Iterable[str],
    type_acquisition: TypeAcquisition | None = None,
) -> list[str]:
    """Sorted, unique typing names to acquire for a set of unresolved imports."""
    if type_acquisition is not None and not type_acquisition.enable:
        return []

    names: set[str] = set()
    for module_name in unresolved_imports:
        package = module_to_package_name(module_name)
        if package is not None:
            names.add(mangle_scoped_package_name(package))

    if type_acquisition is not None:
        names.update(mangle_scoped_package_name(n) for n in type_acquisition.include)
        names.difference_update(mangle_scoped_package_name(n) for n in type_acquisition.exclude)
    return sorted(names)
