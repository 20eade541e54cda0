"""
Registry error taxonomy.

The Registrar is the only layer that raises these. Storage and ledger modules
surface their own raw exceptions, which the Registrar translates.

An integrity mismatch is deliberately absent: a failed validation is reported
as ``ValidationResult.valid == False``, never raised.
"""

from typing import Any, Dict, Optional


class RegistryError(Exception):
    """
    Base class for registry operation failures.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        status_code: HTTP status the API maps this error to
        retryable: Whether repeating the whole operation may succeed
    """

    code = "REGISTRY_ERROR"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        package_id: Optional[str] = None,
        version: Optional[str] = None,
    ):
        self.message = message
        self.package_id = package_id
        self.version = version
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        data: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.package_id is not None:
            data["package_id"] = self.package_id
        if self.version is not None:
            data["version"] = self.version
        return data


class AlreadyExists(RegistryError):
    """A release is already recorded at this (packageId, version)."""

    code = "RELEASE_ALREADY_EXISTS"
    status_code = 409


class NotFound(RegistryError):
    """No release or package exists at the requested key."""

    code = "NOT_FOUND"
    status_code = 404


class Forbidden(RegistryError):
    """The caller does not own the package and holds no elevated privilege."""

    code = "FORBIDDEN"
    status_code = 403


class Unavailable(RegistryError):
    """The release exists but is not ACTIVE, so it cannot be distributed."""

    code = "RELEASE_UNAVAILABLE"
    status_code = 403


class Transient(RegistryError):
    """An external call failed or timed out; retrying the operation is safe."""

    code = "TRANSIENT_FAILURE"
    status_code = 503
    retryable = True


class InvalidReleaseKey(RegistryError):
    """The package id or version is malformed."""

    code = "INVALID_RELEASE_KEY"
    status_code = 422
