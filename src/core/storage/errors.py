"""
Errors raised by the storage quota service.

All of them are raised before any object is written or deleted, so a
caller that catches one can assume nothing changed in storage.
"""


class StorageServiceError(Exception):
    """Base class for storage rule violations."""
    pass


class InvalidStoragePathError(StorageServiceError):
    """The path does not belong to a known storage location."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Invalid storage path '{path}'")


class StoragePlanRequiredError(StorageServiceError):
    """Private storage was requested by a user without a storage plan."""

    def __init__(self) -> None:
        super().__init__("Cannot upload to private storage without a storage plan")


class StoragePlanNotFoundError(StorageServiceError):
    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__(f"Storage plan '{plan_id}' does not exist")


class StorageQuotaExceededError(StorageServiceError):
    """The upload would take the user beyond their storage plan."""

    def __init__(self, available_bytes: int, required_bytes: int) -> None:
        self.available_bytes = available_bytes
        self.required_bytes = required_bytes
        super().__init__(
            f"Not enough storage space: available {available_bytes:,} bytes, "
            f"required {required_bytes:,} bytes"
        )


class StorageNotFoundError(StorageServiceError):
    """A listing found nothing under a path that was expected to exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Storage path '{path}' does not exist")
