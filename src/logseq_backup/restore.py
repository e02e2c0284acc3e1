"""Restore orchestration: first-time clone into a target, or pull into the configured graph.

Clone mode::

    CHECKING_DEPENDENCIES -> PREPARING_TARGET -> CLONING -> CONFIGURING -> VERIFYING -> DONE

Pull-only mode::

    CHECKING_DEPENDENCIES -> PULLING -> DONE
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import BackupConfig
from .engine import Outcome, RestoreState, RunEngine, RunResult, RunStatus, StateTrail
from .errors import StorageFailure
from .keys import GpgKeyAuthority
from .preflight import KeyAuthority, Which, run_preflight
from .remote import encrypted_locator
from .store import GitRepository, RepositoryFactory, VersionStore, participants_key

LOG = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


def decline(_prompt: str) -> bool:
    return False


@dataclass
class VerificationReport:
    found: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing


def verify_layout(path: Path, expected: Sequence[str]) -> VerificationReport:
    """Check a restored graph for its expected top-level entries.

    A missing entry is only a warning: a graph can be partial or organised
    differently and still be a correct restore.
    """
    LOG.info("Verifying restored Logseq graph structure")
    report = VerificationReport()
    for name in expected:
        if (path / name).exists():
            LOG.info("Found %s", name)
            report.found.append(name)
        else:
            LOG.warning("Missing expected entry: %s", name)
            report.missing.append(name)
    LOG.info("Verification completed")
    return report


def _is_non_empty(path: Path) -> bool:
    return path.is_dir() and any(path.iterdir())


class RestoreOrchestrator:
    def __init__(
        self,
        config: BackupConfig,
        store: RepositoryFactory = GitRepository,
        key_authority: Optional[KeyAuthority] = None,
        confirm: Confirm = decline,
        which: Which = shutil.which,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._store = store
        self._keys = key_authority or GpgKeyAuthority()
        self._confirm = confirm
        self._which = which
        self._engine = RunEngine(config, clock=clock)
        self.last_report: Optional[VerificationReport] = None

    # Entry points ----------------------------------------------------------
    def clone(self, target: Path) -> RunResult:
        target = target.expanduser()
        return self._engine.run(
            "restore",
            RestoreState,
            lock_target=target,
            step=lambda trail: self._clone(trail, target),
        )

    def pull(self) -> RunResult:
        return self._engine.run(
            "restore",
            RestoreState,
            lock_target=self._config.graph_path,
            step=self._pull,
        )

    # Clone mode ------------------------------------------------------------
    def _clone(self, trail: StateTrail, target: Path) -> Outcome:
        config = self._config
        LOG.info("Starting Logseq encrypted restore")
        LOG.info("Remote: %s", config.remote_url)
        LOG.info("Recipients: %s", ", ".join(config.recipients))

        trail.enter(RestoreState.CHECKING_DEPENDENCIES)
        run_preflight(self._keys, config.recipients, which=self._which)

        trail.enter(RestoreState.PREPARING_TARGET)
        if target.exists() and not target.is_dir():
            raise StorageFailure(f"Target is not a directory: {target}", operation="prepare-target")
        overwrite = _is_non_empty(target)
        if overwrite:
            LOG.warning("Target directory is not empty: %s", target)
            if not self._confirm(
                f"Target directory {target} is not empty. This may overwrite existing files. Continue?"
            ):
                LOG.info("Restore cancelled by user")
                return Outcome(RunStatus.CANCELLED)

        trail.enter(RestoreState.CLONING)
        locator = encrypted_locator(config.remote_url)
        LOG.info("Cloning encrypted repository to: %s", target)
        if overwrite:
            repo = self._clone_over(locator, target)
        else:
            self._make_target(target)
            repo = self._store.clone(
                locator,
                config.recipients,
                target,
                remote_name=config.restore_remote_name,
                branch=config.branch,
            )
        LOG.info("Repository cloned successfully")

        trail.enter(RestoreState.CONFIGURING)
        self._configure(repo)

        trail.enter(RestoreState.VERIFYING)
        self.last_report = verify_layout(target, config.expected_layout)
        return Outcome(RunStatus.DONE)

    def _make_target(self, target: Path) -> None:
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageFailure(
                f"Cannot create target directory {target}", operation="prepare-target", detail=str(exc)
            ) from exc

    def _clone_over(self, locator: str, target: Path) -> VersionStore:
        # git refuses non-empty destinations, so clone next to the target and move entries across.
        staging = Path(tempfile.mkdtemp(prefix=".logseq-restore-", dir=str(target.parent)))
        try:
            checkout = staging / target.name
            self._store.clone(
                locator,
                self._config.recipients,
                checkout,
                remote_name=self._config.restore_remote_name,
                branch=self._config.branch,
            )
            try:
                for entry in sorted(checkout.iterdir()):
                    destination = target / entry.name
                    if destination.is_dir() and not destination.is_symlink():
                        shutil.rmtree(destination)
                    elif destination.exists() or destination.is_symlink():
                        destination.unlink()
                    shutil.move(str(entry), str(destination))
            except OSError as exc:
                raise StorageFailure(
                    f"Cannot move restored files into {target}", operation="clone", detail=str(exc)
                ) from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return self._store.open(target)

    def _configure(self, repo: VersionStore) -> None:
        config = self._config
        repo.set_config("user.name", config.restore_identity.name)
        repo.set_config("user.email", config.restore_identity.email)
        repo.set_config(participants_key(config.restore_remote_name), " ".join(config.recipients))
        LOG.info("Repository configured for encrypted operations")

    # Pull-only mode --------------------------------------------------------
    def _pull(self, trail: StateTrail) -> Outcome:
        config = self._config
        LOG.info("Starting Logseq encrypted pull into %s", config.graph_path)

        trail.enter(RestoreState.CHECKING_DEPENDENCIES)
        run_preflight(self._keys, config.recipients, which=self._which)

        trail.enter(RestoreState.PULLING)
        repo: VersionStore = self._store.open(config.graph_path)
        LOG.info("Pulling latest changes from encrypted repository")
        output = repo.pull(config.restore_remote_name, config.branch)
        if output:
            LOG.info("%s", output)
        LOG.info("Latest changes pulled successfully")
        return Outcome(RunStatus.DONE)
