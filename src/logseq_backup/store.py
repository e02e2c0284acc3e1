"""Version store adapter over the ``git`` command line.

Every primitive maps to one git invocation so that each step is atomic at
the store level. Nothing here retries: failures propagate as
:class:`~logseq_backup.errors.BackupError` subclasses.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Type, runtime_checkable

from .config import Identity
from .errors import (
    BackupError,
    DependencyMissing,
    EmptyCommit,
    NotARepository,
    RemoteConfigFailure,
    StorageFailure,
    TransportFailure,
)

LOG = logging.getLogger(__name__)

PARTICIPANTS_OPTION = "gcrypt-participants"
INITIAL_COMMIT_MESSAGE = "Initial commit with gitignore"
REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "diverg")


class VersionStore(Protocol):
    """Operations the orchestrators need from an opened repository."""

    path: Path

    def pending_paths(self) -> List[str]:
        ...

    def has_pending_changes(self) -> bool:
        ...

    def stage_all(self) -> None:
        ...

    def commit(self, message: str) -> str:
        ...

    def has_remote(self, name: str) -> bool:
        ...

    def remove_remote(self, name: str) -> None:
        ...

    def configure_remote(self, name: str, locator: str, participants: Sequence[str]) -> None:
        ...

    def set_config(self, key: str, value: str) -> None:
        ...

    def push(self, remote_name: str, branch: str) -> str:
        ...

    def pull(self, remote_name: str, branch: str) -> str:
        ...


@runtime_checkable
class RepositoryFactory(Protocol):
    """Creates or opens repositories; ``GitRepository`` itself satisfies it."""

    def ensure_initialized(
        self,
        path: Path,
        identity: Identity,
        ignore_patterns: Sequence[str],
        branch: str = "master",
    ) -> VersionStore:
        ...

    def open(self, path: Path) -> VersionStore:
        ...

    def clone(
        self,
        locator: str,
        participants: Sequence[str],
        dest: Path,
        remote_name: str = "origin",
        branch: Optional[str] = None,
    ) -> VersionStore:
        ...


def participants_key(remote_name: str) -> str:
    return f"remote.{remote_name}.{PARTICIPANTS_OPTION}"


def _git_env() -> dict:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _run_git(
    args: Sequence[str],
    cwd: Optional[Path],
    operation: str,
    error_cls: Type[BackupError] = StorageFailure,
    check: bool = True,
) -> subprocess.CompletedProcess:
    cmd = ["git", *args]
    LOG.debug("Running %s in %s", " ".join(cmd), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=_git_env(),
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise DependencyMissing("git is not installed", operation=operation, detail=str(exc)) from exc

    if check and result.returncode != 0:
        output = result.stderr.strip() or result.stdout.strip()
        if error_cls is TransportFailure:
            rejected = any(marker in output for marker in REJECTION_MARKERS)
            raise TransportFailure(
                f"git {operation} failed", operation=operation, detail=output, rejected=rejected
            )
        raise error_cls(f"git {operation} failed", operation=operation, detail=output)
    return result


class GitRepository:
    """Handle on a directory managed by git."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"GitRepository({str(self.path)!r})"

    # Lifecycle -------------------------------------------------------------
    @staticmethod
    def is_repository(path: Path) -> bool:
        return (path / ".git").exists()

    @classmethod
    def open(cls, path: Path) -> "GitRepository":
        if not cls.is_repository(path):
            raise NotARepository(f"Not a git repository: {path}", operation="open")
        return cls(path)

    @classmethod
    def ensure_initialized(
        cls,
        path: Path,
        identity: Identity,
        ignore_patterns: Sequence[str],
        branch: str = "master",
    ) -> "GitRepository":
        if not path.is_dir():
            raise StorageFailure(f"Logseq graph not found at: {path}", operation="init")

        if cls.is_repository(path):
            repo = cls(path)
            if repo.head() is None:
                LOG.warning("Repository at %s has no commits; completing initialization", path)
                repo._initial_commit(ignore_patterns)
            else:
                LOG.info("Git repository already exists")
            return repo

        LOG.info("Initializing git repository")
        _run_git(["init"], cwd=path, operation="init")
        repo = cls(path)
        _run_git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=path, operation="init")
        repo.set_config("user.name", identity.name)
        repo.set_config("user.email", identity.email)
        repo._initial_commit(ignore_patterns)
        return repo

    def _initial_commit(self, ignore_patterns: Sequence[str]) -> None:
        gitignore = self.path / ".gitignore"
        if not gitignore.exists():
            try:
                gitignore.write_text(
                    "# Logseq temporary files\n" + "".join(f"{p}\n" for p in ignore_patterns),
                    encoding="utf-8",
                )
            except OSError as exc:
                raise StorageFailure(
                    f"Cannot write {gitignore}", operation="init", detail=str(exc)
                ) from exc
        self._git("add", "--", ".gitignore", operation="init")
        self._git(
            "commit", "--allow-empty", "-m", INITIAL_COMMIT_MESSAGE, "--", ".gitignore", operation="init"
        )

    @classmethod
    def clone(
        cls,
        locator: str,
        participants: Sequence[str],
        dest: Path,
        remote_name: str = "origin",
        branch: Optional[str] = None,
    ) -> "GitRepository":
        cmd = ["clone", "--origin", remote_name]
        if participants:
            cmd.extend(["-c", f"{participants_key(remote_name)}={' '.join(participants)}"])
        if branch:
            cmd.extend(["--branch", branch])
        cmd.extend([locator, str(dest)])
        LOG.info("Cloning repository to %s", dest)
        _run_git(cmd, cwd=None, operation="clone", error_cls=TransportFailure)
        return cls(dest)

    # Working tree ----------------------------------------------------------
    def _git(
        self,
        *args: str,
        operation: str,
        error_cls: Type[BackupError] = StorageFailure,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        return _run_git(args, cwd=self.path, operation=operation, error_cls=error_cls, check=check)

    def pending_paths(self) -> List[str]:
        result = self._git("status", "--porcelain", "--untracked-files=all", operation="status")
        return [line[3:] for line in result.stdout.splitlines() if line.strip()]

    def has_pending_changes(self) -> bool:
        return bool(self.pending_paths())

    def stage_all(self) -> None:
        self._git("add", "--all", ".", operation="add")

    def commit(self, message: str) -> str:
        if not self.has_pending_changes():
            raise EmptyCommit("Nothing to commit", operation="commit")
        result = self._git("commit", "-m", message, operation="commit", check=False)
        if result.returncode != 0:
            output = result.stdout + result.stderr
            if "nothing to commit" in output or "nothing added to commit" in output:
                raise EmptyCommit("Nothing to commit", operation="commit", detail=output)
            raise StorageFailure("git commit failed", operation="commit", detail=output)
        commit_id = self.head()
        if commit_id is None:
            raise StorageFailure("Commit succeeded but HEAD is unresolved", operation="commit")
        return commit_id

    def head(self) -> Optional[str]:
        result = self._git("rev-parse", "--verify", "--quiet", "HEAD", operation="rev-parse", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # Configuration and remotes --------------------------------------------
    def get_config(self, key: str) -> Optional[str]:
        result = self._git("config", "--get", key, operation="config", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def set_config(self, key: str, value: str) -> None:
        self._git("config", key, value, operation="config", error_cls=RemoteConfigFailure)

    def remote_names(self) -> List[str]:
        result = self._git("remote", operation="remote")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def has_remote(self, name: str) -> bool:
        return name in self.remote_names()

    def add_remote(self, name: str, url: str) -> None:
        self._git("remote", "add", name, url, operation="remote-add", error_cls=RemoteConfigFailure)

    def remove_remote(self, name: str) -> None:
        self._git("remote", "remove", name, operation="remote-remove", error_cls=RemoteConfigFailure)

    def configure_remote(self, name: str, locator: str, participants: Sequence[str]) -> None:
        self.add_remote(name, locator)
        self.set_config(participants_key(name), " ".join(participants))

    # Transport -------------------------------------------------------------
    def push(self, remote_name: str, branch: str) -> str:
        result = self._git("push", remote_name, branch, operation="push", error_cls=TransportFailure)
        return (result.stdout + result.stderr).strip()

    def pull(self, remote_name: str, branch: str) -> str:
        result = self._git(
            "pull", "--ff-only", remote_name, branch, operation="pull", error_cls=TransportFailure
        )
        return (result.stdout + result.stderr).strip()
