from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    DEPENDENCY_MISSING = "DependencyMissing"
    KEY_NOT_FOUND = "KeyNotFound"
    MISSING_RECIPIENTS = "MissingRecipients"
    STORAGE_FAILURE = "StorageFailure"
    REMOTE_CONFIG_FAILURE = "RemoteConfigFailure"
    TRANSPORT_FAILURE = "TransportFailure"
    NOT_A_REPOSITORY = "NotARepository"
    ALREADY_RUNNING = "AlreadyRunning"
    EMPTY_COMMIT = "EmptyCommit"


class BackupError(Exception):
    """Base class for failures raised while orchestrating a backup or restore."""

    kind: ErrorKind

    def __init__(self, message: str, operation: str = "", detail: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.detail = detail.strip()

    def describe(self) -> str:
        parts = [f"{self.kind.value}: {self}"]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.detail:
            parts.append(f"detail={self.detail}")
        return " | ".join(parts)


class DependencyMissing(BackupError):
    kind = ErrorKind.DEPENDENCY_MISSING


class KeyNotFound(BackupError):
    kind = ErrorKind.KEY_NOT_FOUND


class MissingRecipients(BackupError):
    kind = ErrorKind.MISSING_RECIPIENTS


class StorageFailure(BackupError):
    kind = ErrorKind.STORAGE_FAILURE


class RemoteConfigFailure(BackupError):
    kind = ErrorKind.REMOTE_CONFIG_FAILURE


class TransportFailure(BackupError):
    """Push, pull or clone against the remote failed.

    ``rejected`` is set when the remote refused the update because histories
    diverged. It does not change how the failure is handled.
    """

    kind = ErrorKind.TRANSPORT_FAILURE

    def __init__(
        self,
        message: str,
        operation: str = "",
        detail: str = "",
        rejected: bool = False,
    ) -> None:
        super().__init__(message, operation=operation, detail=detail)
        self.rejected = rejected


class NotARepository(BackupError):
    kind = ErrorKind.NOT_A_REPOSITORY


class AlreadyRunning(BackupError):
    kind = ErrorKind.ALREADY_RUNNING


class EmptyCommit(BackupError):
    """Recoverable: there was nothing to commit."""

    kind = ErrorKind.EMPTY_COMMIT

