"""Package-name validation and declaration-package naming.

``validate_package_name`` is a pure function: it only classifies whether a
string is a syntactically plausible npm package name. Registry membership is
decided elsewhere.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import quote

MAX_PACKAGE_NAME_LENGTH = 214
TYPES_SCOPE = "@types"

# Characters encodeURIComponent leaves untouched besides alphanumerics.
_URI_SAFE = "-_.!~*'()"
_SCOPED_RE = re.compile(r"^@([^/]+)/([^/]+)$")


class NameValidationResult(StrEnum):
    OK = "ok"
    EMPTY_NAME = "empty_name"
    NAME_TOO_LONG = "name_too_long"
    NAME_STARTS_WITH_DOT = "name_starts_with_dot"
    NAME_STARTS_WITH_UNDERSCORE = "name_starts_with_underscore"
    NAME_CONTAINS_NON_URI_SAFE_CHARACTERS = "name_contains_non_uri_safe_characters"


@dataclass(frozen=True)
class NameValidation:
    result: NameValidationResult
    # The offending part of a scoped name, when it is not the whole name.
    name: str | None = None
    is_scope_name: bool = False

    @property
    def ok(self) -> bool:
        return self.result is NameValidationResult.OK


def validate_package_name(name: str, *, support_scoped: bool = True) -> NameValidation:
    if not name:
        return NameValidation(NameValidationResult.EMPTY_NAME)
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        return NameValidation(NameValidationResult.NAME_TOO_LONG)
    if name.startswith("."):
        return NameValidation(NameValidationResult.NAME_STARTS_WITH_DOT)
    if name.startswith("_"):
        return NameValidation(NameValidationResult.NAME_STARTS_WITH_UNDERSCORE)

    if support_scoped:
        match = _SCOPED_RE.match(name)
        if match:
            scope, bare = match.group(1), match.group(2)
            scope_result = validate_package_name(scope, support_scoped=False)
            if not scope_result.ok:
                return NameValidation(scope_result.result, name=scope, is_scope_name=True)
            bare_result = validate_package_name(bare, support_scoped=False)
            if not bare_result.ok:
                return NameValidation(bare_result.result, name=bare)
            return NameValidation(NameValidationResult.OK)

    if quote(name, safe=_URI_SAFE) != name:
        return NameValidation(NameValidationResult.NAME_CONTAINS_NON_URI_SAFE_CHARACTERS)
    return NameValidation(NameValidationResult.OK)


def is_valid_package_name(name: str) -> bool:
    return validate_package_name(name).ok


def mangle_scoped_package_name(name: str) -> str:
    """``@babel/core`` -> ``babel__core``; unscoped names pass through."""
    match = _SCOPED_RE.match(name)
    if match:
        return f"{match.group(1)}__{match.group(2)}"
    return name


def types_package_name(typing_name: str) -> str:
    """Declaration package that provides ``typing_name``: ``lodash`` -> ``@types/lodash``."""
    return f"{TYPES_SCOPE}/{mangle_scoped_package_name(typing_name)}"
