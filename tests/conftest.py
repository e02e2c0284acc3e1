"""Shared fixtures and in-memory collaborators for the orchestrator tests."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from logseq_backup.config import BackupConfig
from logseq_backup.errors import EmptyCommit, KeyNotFound, NotARepository, TransportFailure
from logseq_backup.keys import KeyHandle
from logseq_backup.store import participants_key

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


class FakeRepository:
    """Stands in for a git working tree."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.dirty: List[str] = []
        self.commits: List[str] = []
        self.remotes: Dict[str, str] = {}
        self.config: Dict[str, str] = {}
        self.pushes: List[tuple] = []
        self.pulls: List[tuple] = []
        self.calls: List[str] = []
        self.push_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        self.commit_error: Optional[Exception] = None

    def pending_paths(self) -> List[str]:
        return list(self.dirty)

    def has_pending_changes(self) -> bool:
        return bool(self.dirty)

    def stage_all(self) -> None:
        self.calls.append("stage_all")

    def commit(self, message: str) -> str:
        self.calls.append("commit")
        if self.commit_error is not None:
            raise self.commit_error
        if not self.dirty:
            raise EmptyCommit("Nothing to commit", operation="commit")
        self.commits.append(message)
        self.dirty = []
        return self.head()

    def head(self) -> str:
        return f"{len(self.commits):040x}"

    def has_remote(self, name: str) -> bool:
        return name in self.remotes

    def remove_remote(self, name: str) -> None:
        self.calls.append(f"remove_remote:{name}")
        del self.remotes[name]
        for key in [k for k in self.config if k.startswith(f"remote.{name}.")]:
            del self.config[key]

    def configure_remote(self, name: str, locator: str, participants: Sequence[str]) -> None:
        self.calls.append(f"configure_remote:{name}")
        self.remotes[name] = locator
        self.config[participants_key(name)] = " ".join(participants)

    def set_config(self, key: str, value: str) -> None:
        self.config[key] = value

    def push(self, remote_name: str, branch: str) -> str:
        self.calls.append("push")
        if self.push_error is not None:
            raise self.push_error
        self.pushes.append((remote_name, branch, self.head()))
        return ""

    def pull(self, remote_name: str, branch: str) -> str:
        self.calls.append("pull")
        if self.pull_error is not None:
            raise self.pull_error
        self.pulls.append((remote_name, branch))
        return ""


class FakeStore:
    """Class-level side of the version store: init, open and clone."""

    def __init__(self, layout: Sequence[str] = ("journals", "pages", "logseq")) -> None:
        self.repos: Dict[Path, FakeRepository] = {}
        self.init_calls = 0
        self.clone_calls: List[tuple] = []
        self.clone_error: Optional[Exception] = None
        self.init_error: Optional[Exception] = None
        self.layout = layout

    def ensure_initialized(self, path: Path, identity, ignore_patterns, branch="master") -> FakeRepository:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error
        if path not in self.repos:
            repo = FakeRepository(path)
            repo.config["user.name"] = identity.name
            repo.config["user.email"] = identity.email
            self.repos[path] = repo
        return self.repos[path]

    def open(self, path: Path) -> FakeRepository:
        if path in self.repos:
            return self.repos[path]
        if (path / ".git").is_dir():
            self.repos[path] = FakeRepository(path)
            return self.repos[path]
        raise NotARepository(f"Not a git repository: {path}", operation="open")

    def clone(self, locator: str, participants, dest: Path, remote_name="origin", branch=None) -> FakeRepository:
        self.clone_calls.append((locator, tuple(participants), dest, remote_name, branch))
        if self.clone_error is not None:
            raise self.clone_error
        dest.mkdir(parents=True, exist_ok=True)
        (dest / ".git").mkdir()
        for name in self.layout:
            (dest / name).mkdir()
        if "pages" in self.layout:
            (dest / "pages" / "restored.md").write_text("- restored\n")
        repo = FakeRepository(dest)
        repo.remotes[remote_name] = locator
        self.repos[dest] = repo
        return repo


class FakeKeyAuthority:
    def __init__(self, known: Sequence[str] = ()) -> None:
        self.known = set(known)
        self.queries: List[str] = []

    def has_usable_key(self, identity: str) -> bool:
        self.queries.append(identity)
        return identity in self.known

    def resolve(self, identity: str) -> KeyHandle:
        if identity not in self.known:
            raise KeyNotFound(f"GPG key not found: {identity}", operation="resolve-key")
        return KeyHandle(identity=identity, fingerprint="A" * 40, validity="u", capabilities="scESC")


def all_tools(_tool: str) -> Optional[str]:
    return "/usr/bin/tool"


@pytest.fixture
def graph_dir(tmp_path: Path) -> Path:
    graph = tmp_path / "graph"
    for sub in ("journals", "pages", "logseq"):
        (graph / sub).mkdir(parents=True)
    (graph / "pages" / "contents.md").write_text("- hello\n")
    return graph


@pytest.fixture
def config(tmp_path: Path, graph_dir: Path) -> BackupConfig:
    return BackupConfig(
        graph_path=graph_dir,
        remote_url="git@github.com:alice/logseq-backup.git",
        recipients=["alice@example.com"],
        log_dir=tmp_path / "logs",
        state_dir=tmp_path / "state",
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def keys() -> FakeKeyAuthority:
    return FakeKeyAuthority(known=["alice@example.com", "bob@example.com"])


@pytest.fixture
def transport_failure() -> TransportFailure:
    return TransportFailure(
        "git push failed",
        operation="push",
        detail="! [rejected] master -> master (fetch first)",
        rejected=True,
    )
