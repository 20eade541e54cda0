"""Raw ledger failures, surfaced unchanged to the Registrar."""


class LedgerError(Exception):
    """
    Raised when a ledger transaction fails.

    Attributes:
        code: Ledger error code (mirrors the contract's error enum)
        message: Human-readable error description
    """

    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class ReleaseExistsError(LedgerError):
    """A release is already recorded under this key."""

    def __init__(self, package_id: str, version: str):
        self.package_id = package_id
        self.version = version
        super().__init__(
            f"Release {package_id} version {version} already exists",
            code="RELEASE_ALREADY_EXISTS",
        )


class ReleaseNotFoundError(LedgerError):
    """No release is recorded under this key."""

    def __init__(self, package_id: str, version: str):
        self.package_id = package_id
        self.version = version
        super().__init__(
            f"Release not found for key: {package_id}:{version}",
            code="RELEASE_NOT_FOUND",
        )
