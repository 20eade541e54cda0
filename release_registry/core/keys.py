"""Release key validation and formatting."""

import re

from .errors import InvalidReleaseKey

PACKAGE_ID_PATTERN = r"^[a-z0-9][a-z0-9.-]*$"
VERSION_PATTERN = r"^\d+\.\d+\.\d+$"

_PACKAGE_ID_RE = re.compile(PACKAGE_ID_PATTERN)
_VERSION_RE = re.compile(VERSION_PATTERN)


def validate_package_id(package_id: str) -> str:
    """Return ``package_id`` unchanged or raise InvalidReleaseKey.

    Package ids are reverse-domain style: lowercase alphanumerics, dots and
    dashes, never starting with a dot and never containing ``..``.
    """
    if not package_id or len(package_id) > 255:
        raise InvalidReleaseKey("Package ID must be 1-255 characters", package_id=package_id)
    if not _PACKAGE_ID_RE.match(package_id) or ".." in package_id:
        raise InvalidReleaseKey(
            "Package ID must be lowercase alphanumeric with dots/dashes",
            package_id=package_id,
        )
    return package_id


def validate_version(version: str) -> str:
    """Return ``version`` unchanged or raise InvalidReleaseKey."""
    if not version or not _VERSION_RE.match(version):
        raise InvalidReleaseKey(
            "Version must follow MAJOR.MINOR.PATCH (e.g. 1.0.0)",
            version=version,
        )
    return version


def validate_release_key(package_id: str, version: str) -> None:
    validate_package_id(package_id)
    validate_version(version)


def ledger_key(package_id: str, version: str) -> str:
    """Key under which the ledger stores a release."""
    return f"{package_id}:{version}"
