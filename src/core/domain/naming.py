"""File naming contract for exported versions.

A version is stored as ``<resourceName><sep><snapshotNumber><sep><version>.json``
where ``version`` is a UUID. The default separator is ``+``; ``_`` is accepted
for folders produced by older releases.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from core.domain.errors import FilenameError

DEFAULT_SEPARATOR = "+"
LEGACY_SEPARATOR = "_"

_UUID = r"[a-zA-Z0-9]{8}-[a-zA-Z0-9]{4}-[a-zA-Z0-9]{4}-[a-zA-Z0-9]{4}-[a-zA-Z0-9]{12}"
_NAME = r"[\w-]+?"


@dataclass(frozen=True)
class VersionFileName:
    resource_name: str
    snapshot_number: int
    version: str


def _pattern(separator: str, resource_name: str | None = None) -> re.Pattern[str]:
    sep = re.escape(separator)
    name = re.escape(resource_name) if resource_name else _NAME
    return re.compile(rf"^(?P<name>{name}){sep}(?P<snapshot>[0-9]+){sep}(?P<version>{_UUID})\.json$")


def format_version_filename(
    resource_name: str,
    snapshot_number: int | str,
    version: str,
    *,
    separator: str = DEFAULT_SEPARATOR,
) -> str:
    """Build the on-disk file name for a version.

    Raises `FilenameError` when the name could not be parsed back unambiguously.
    """

    if not resource_name or separator in resource_name:
        raise FilenameError(f"resource name {resource_name!r} cannot contain separator {separator!r}")
    if not re.fullmatch(r"[\w-]+", resource_name):
        raise FilenameError(f"resource name {resource_name!r} contains unsupported characters")
    if not re.fullmatch(_UUID, version or ""):
        raise FilenameError(f"version {version!r} is not a UUID")
    return f"{resource_name}{separator}{int(snapshot_number)}{separator}{version}.json"


def parse_version_filename(
    filename: str,
    *,
    separator: str = DEFAULT_SEPARATOR,
    resource_name: str | None = None,
) -> VersionFileName | None:
    """Parse a file name. Returns None when it does not follow the contract."""

    match = _pattern(separator, resource_name).match(Path(filename).name)
    if not match:
        return None
    return VersionFileName(
        resource_name=match.group("name"),
        snapshot_number=int(match.group("snapshot")),
        version=match.group("version"),
    )
