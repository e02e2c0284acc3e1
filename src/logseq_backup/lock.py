from __future__ import annotations

import fcntl
import hashlib
import logging
import os
from pathlib import Path
from typing import IO, Optional

from .errors import AlreadyRunning, StorageFailure

LOG = logging.getLogger(__name__)


def lock_path_for(state_dir: Path, target: Path) -> Path:
    digest = hashlib.sha256(str(target.expanduser().resolve()).encode("utf-8")).hexdigest()
    return state_dir / "locks" / f"{digest[:16]}.lock"


class RunLock:
    """Exclusive, non-blocking lock scoped to one repository path.

    The lock file lives under the state directory, never inside the
    repository, so it cannot end up in a commit.
    """

    def __init__(self, state_dir: Path, target: Path) -> None:
        self.target = target
        self.path = lock_path_for(state_dir, target)
        self._handle: Optional[IO[str]] = None

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise StorageFailure(
                f"Cannot open lock file {self.path}", operation="lock", detail=str(exc)
            ) from exc

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            handle.close()
            raise AlreadyRunning(
                f"Another run holds the lock for {self.target}",
                operation="lock",
                detail=str(self.path),
            ) from exc

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle
        LOG.debug("Acquired run lock %s for %s", self.path, self.target)

    def release(self) -> None:
        if not self.held:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        LOG.debug("Released run lock %s", self.path)

    @property
    def held(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
