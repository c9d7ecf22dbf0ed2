"""Utilities for retrieving and validating the package version."""

from __future__ import annotations

import os
import re
from importlib import metadata
from pathlib import Path

from packaging.version import InvalidVersion, Version

_DISTRIBUTION = "aldl-link"
_RELEASE_ENV_VAR = "PYTHON_SEMANTIC_RELEASE_VERSION"


def _version_from_changelog() -> str:
    """Return the newest ``## vX.Y.Z`` heading of the repository changelog.

    Used when the distribution metadata is missing, e.g. when running from a
    source checkout without an editable install.
    """

    for parent in Path(__file__).resolve().parents[1:3]:
        changelog = parent / "CHANGELOG.md"
        if not changelog.is_file():
            continue
        for line in changelog.read_text(encoding="utf-8").splitlines():
            match = re.match(r"^## v(?P<version>\d+\.\d+\.\d+)\b", line)
            if match:
                return match.group("version")
    raise RuntimeError(
        f"Unable to determine the '{_DISTRIBUTION}' version from package metadata "
        "or the changelog."
    )


def _load_version() -> str:
    """Return the validated ``MAJOR.MINOR.PATCH`` package version.

    ``PYTHON_SEMANTIC_RELEASE_VERSION`` overrides the metadata during release
    builds.
    """

    raw_version = os.environ.get(_RELEASE_ENV_VAR)
    if not raw_version:
        try:
            raw_version = metadata.version(_DISTRIBUTION)
        except metadata.PackageNotFoundError:
            raw_version = _version_from_changelog()

    try:
        parsed = Version(raw_version)
    except InvalidVersion as exc:
        raise RuntimeError(
            f"Invalid version string for '{_DISTRIBUTION}': {raw_version!r}."
        ) from exc

    if len(parsed.release) != 3:
        raise RuntimeError(
            f"The '{_DISTRIBUTION}' version must follow MAJOR.MINOR.PATCH. "
            f"Found: {raw_version!r}."
        )
    return raw_version


__version__ = _load_version()

__all__ = ["__version__"]
