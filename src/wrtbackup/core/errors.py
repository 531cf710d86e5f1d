"""Exception hierarchy shared by the backup and restore workflow."""

from __future__ import annotations


class WrtBackupError(RuntimeError):
    """Base exception for backup/restore errors."""


class AuthError(WrtBackupError):
    """Raised when a device rejects credentials or returns a malformed auth response."""


class CollectionError(WrtBackupError):
    """Raised when configuration cannot be gathered or the archive cannot be written."""


class CatalogError(WrtBackupError):
    """Raised when the backup catalog cannot be read, written or updated."""


class BackupNotFoundError(CatalogError):
    """Raised when a backup id is not present in a device catalog."""

    def __init__(self, device_name: str, backup_id: str) -> None:
        super().__init__(f"Backup '{backup_id}' not found for device '{device_name}'")
        self.device_name = device_name
        self.backup_id = backup_id


class RestoreError(WrtBackupError):
    """Raised when an archive cannot be pushed back to a device."""


class ActivationError(RestoreError):
    """Raised when the archive was accepted but the activation step failed.

    The device holds the restored configuration but has not been rebooted.
    Callers must not retry the upload.
    """


class DeviceNotFoundError(KeyError):
    """Raised when a device name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Device '{self.name}' not found"


class OperationError(WrtBackupError):
    """User-facing failure of a facade operation.

    ``kind`` classifies the originating error; the original exception is kept
    as ``__cause__``.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
