from __future__ import annotations


class BackupError(Exception):
    """Base class for failures that end a backup run."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code or 1


class DumpFailure(BackupError):
    """The database dump tool failed or produced no artifact."""


class UploadFailure(BackupError):
    """restic could not initialize the repository or create the snapshot."""


class RetentionFailure(BackupError):
    """restic forget/prune failed after a snapshot was created."""
