"""Error types raised by the backup/restore services."""


class BackupError(Exception):
    """Base class for backup and restore failures."""


class BackupValidationError(BackupError, ValueError):
    """The uploaded archive was rejected before any write happened."""


class SnapshotError(BackupError):
    """The pre-import safety snapshot could not be written."""


class BackupImportError(BackupError):
    """The import failed as a whole and its writes were rolled back."""


class PermissionDeniedError(BackupError):
    """The acting user is not allowed to run the operation."""
