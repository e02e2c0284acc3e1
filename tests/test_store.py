"""Tests for the git-backed version store, run against a real git binary."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest

from conftest import requires_git
from logseq_backup.config import DEFAULT_IGNORE_PATTERNS, Identity
from logseq_backup.errors import EmptyCommit, NotARepository, StorageFailure, TransportFailure
from logseq_backup.store import INITIAL_COMMIT_MESSAGE, GitRepository, participants_key

pytestmark = requires_git

IDENTITY = Identity(name="Logseq Backup", email="backup@logseq.local")


@pytest.fixture(autouse=True)
def isolated_git(tmp_path: Path, monkeypatch):
    """Keep the developer's git configuration out of the tests."""
    empty = tmp_path / "gitconfig"
    empty.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(empty))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "Test Runner")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "runner@example.com")


def git(cwd: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True
    ).stdout.strip()


def init_repo(path: Path) -> GitRepository:
    return GitRepository.ensure_initialized(path, IDENTITY, DEFAULT_IGNORE_PATTERNS)


def bare_remote(path: Path) -> Path:
    subprocess.run(["git", "init", "--bare", str(path)], check=True, capture_output=True)
    subprocess.run(
        ["git", "symbolic-ref", "HEAD", "refs/heads/master"],
        cwd=str(path),
        check=True,
        capture_output=True,
    )
    return path


def commit_file(repo: GitRepository, name: str, text: str, message: str) -> str:
    target = repo.path / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text)
    repo.stage_all()
    return repo.commit(message)


class TestInitialization:
    def test_fresh_graph_gets_repository_and_gitignore(self, graph_dir):
        """A new repository holds exactly one commit with the exclusion file."""
        repo = init_repo(graph_dir)

        assert git(graph_dir, "rev-list", "--count", "HEAD") == "1"
        gitignore = (graph_dir / ".gitignore").read_text(encoding="utf-8")
        for pattern in DEFAULT_IGNORE_PATTERNS:
            assert pattern in gitignore.splitlines()
        assert repo.get_config("user.name") == "Logseq Backup"
        assert repo.get_config("user.email") == "backup@logseq.local"
        assert git(graph_dir, "symbolic-ref", "--short", "HEAD") == "master"
        assert git(graph_dir, "log", "--format=%s") == INITIAL_COMMIT_MESSAGE

    def test_existing_repository_is_left_alone(self, graph_dir):
        """Calling ensure twice does not add commits or rewrite files."""
        repo = init_repo(graph_dir)
        (graph_dir / ".gitignore").write_text("custom\n")
        repo.stage_all()
        head = repo.commit("custom ignore")

        again = init_repo(graph_dir)

        assert again.head() == head
        assert git(graph_dir, "rev-list", "--count", "HEAD") == "2"
        assert (graph_dir / ".gitignore").read_text() == "custom\n"

    def test_interrupted_init_commits_only_the_exclusion_file(self, graph_dir):
        """Finishing an unborn repository leaves already staged notes out of the initial commit."""
        git(graph_dir, "init")
        git(graph_dir, "add", "pages/contents.md")

        repo = init_repo(graph_dir)

        assert git(graph_dir, "ls-tree", "-r", "--name-only", "HEAD").splitlines() == [".gitignore"]
        assert git(graph_dir, "log", "--format=%s") == INITIAL_COMMIT_MESSAGE
        assert repo.pending_paths() == ["pages/contents.md"]

    def test_missing_graph_directory(self, tmp_path):
        """A graph path that does not exist is a storage failure."""
        with pytest.raises(StorageFailure):
            init_repo(tmp_path / "nowhere")

    def test_open_requires_repository(self, tmp_path):
        """Opening a plain directory raises NotARepository."""
        with pytest.raises(NotARepository):
            GitRepository.open(tmp_path)


class TestChangeDetection:
    def test_untracked_file_is_pending(self, graph_dir):
        """Files never committed count as changes."""
        repo = init_repo(graph_dir)

        assert repo.pending_paths() == ["pages/contents.md"]

    def test_clean_tree_has_nothing_pending(self, graph_dir):
        repo = init_repo(graph_dir)
        repo.stage_all()
        repo.commit("all")

        assert not repo.has_pending_changes()

    def test_modification_and_deletion_are_pending(self, graph_dir):
        """Edits and deletions of tracked files count as changes."""
        repo = init_repo(graph_dir)
        commit_file(repo, "journals/2026_04_18.md", "- one\n", "journal")

        (graph_dir / "journals" / "2026_04_18.md").write_text("- two\n")
        (graph_dir / "pages" / "contents.md").unlink()

        assert sorted(repo.pending_paths()) == ["journals/2026_04_18.md", "pages/contents.md"]

    def test_permission_change_is_pending(self, graph_dir):
        """A mode-only change counts as a change."""
        repo = init_repo(graph_dir)
        repo.stage_all()
        repo.commit("all")
        page = graph_dir / "pages" / "contents.md"

        os.chmod(page, 0o755)

        assert repo.pending_paths() == ["pages/contents.md"]

    def test_ignored_paths_are_never_pending(self, graph_dir):
        """Paths covered by the exclusion list do not count."""
        repo = init_repo(graph_dir)
        repo.stage_all()
        repo.commit("all")

        (graph_dir / "logseq" / "config.edn").write_text("{}\n")
        (graph_dir / "sync.log").write_text("noise\n")
        (graph_dir / "pages" / "draft.tmp").write_text("noise\n")

        assert repo.pending_paths() == []

    def test_commit_on_clean_tree_is_rejected(self, graph_dir):
        """Empty commits are never created."""
        repo = init_repo(graph_dir)
        repo.stage_all()
        repo.commit("all")
        head = repo.head()

        with pytest.raises(EmptyCommit):
            repo.commit("nothing")
        assert repo.head() == head


class TestTransport:
    def test_push_then_clone_carries_history(self, graph_dir, tmp_path):
        """A pushed commit is visible in a clone that records its participants."""
        remote = bare_remote(tmp_path / "remote.git")
        repo = init_repo(graph_dir)
        repo.configure_remote("backup", str(remote), ["alice@example.com"])
        repo.stage_all()
        head = repo.commit("backup one")

        repo.push("backup", "master")
        clone = GitRepository.clone(
            str(remote), ["alice@example.com", "bob@example.com"], tmp_path / "copy", branch="master"
        )

        assert clone.head() == head
        assert (tmp_path / "copy" / "pages" / "contents.md").read_text() == "- hello\n"
        assert clone.get_config(participants_key("origin")) == "alice@example.com bob@example.com"
        assert repo.get_config(participants_key("backup")) == "alice@example.com"

    def test_pull_fast_forwards(self, graph_dir, tmp_path):
        """Pulling brings in commits pushed from elsewhere."""
        remote = bare_remote(tmp_path / "remote.git")
        repo = init_repo(graph_dir)
        repo.add_remote("backup", str(remote))
        repo.stage_all()
        repo.commit("first")
        repo.push("backup", "master")
        other = GitRepository.clone(str(remote), [], tmp_path / "other", branch="master")
        commit_file(repo, "pages/new.md", "- new\n", "second")
        repo.push("backup", "master")

        other.pull("origin", "master")

        assert other.head() == repo.head()
        assert (tmp_path / "other" / "pages" / "new.md").exists()

    def test_diverged_push_is_rejected_without_local_change(self, graph_dir, tmp_path):
        """A push onto a diverged remote fails as rejected and leaves local state alone."""
        remote = bare_remote(tmp_path / "remote.git")
        repo = init_repo(graph_dir)
        repo.add_remote("backup", str(remote))
        repo.stage_all()
        repo.commit("first")
        repo.push("backup", "master")

        other = GitRepository.clone(str(remote), [], tmp_path / "other", branch="master")
        commit_file(other, "pages/elsewhere.md", "- elsewhere\n", "from another machine")
        other.push("origin", "master")

        local_head = commit_file(repo, "pages/local.md", "- local\n", "local edit")

        with pytest.raises(TransportFailure) as excinfo:
            repo.push("backup", "master")

        assert excinfo.value.rejected
        assert repo.head() == local_head
        assert (graph_dir / "pages" / "local.md").read_text() == "- local\n"
        assert not (graph_dir / "pages" / "elsewhere.md").exists()

    def test_clone_of_missing_remote_fails(self, tmp_path):
        """An unreachable locator is a transport failure."""
        with pytest.raises(TransportFailure):
            GitRepository.clone(str(tmp_path / "absent.git"), [], tmp_path / "copy")
