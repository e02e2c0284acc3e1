from __future__ import annotations

import logging
import shutil
from datetime import datetime
from typing import Callable, Optional

from .changes import ChangeDetector
from .config import BackupConfig
from .engine import BackupState, Outcome, RunEngine, RunResult, RunStatus, StateTrail
from .errors import EmptyCommit
from .journal import prune_logs
from .keys import GpgKeyAuthority
from .preflight import KeyAuthority, Which, run_preflight
from .remote import EncryptedRemoteBinder
from .store import GitRepository, RepositoryFactory, VersionStore

LOG = logging.getLogger(__name__)

COMMIT_MESSAGE_FORMAT = "Logseq backup %Y-%m-%d %H:%M:%S"


class BackupOrchestrator:
    """Runs one backup cycle: init if needed, bind the remote, commit and push when dirty."""

    def __init__(
        self,
        config: BackupConfig,
        store: RepositoryFactory = GitRepository,
        key_authority: Optional[KeyAuthority] = None,
        binder: Optional[EncryptedRemoteBinder] = None,
        detector: Optional[ChangeDetector] = None,
        which: Which = shutil.which,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._store = store
        self._keys = key_authority or GpgKeyAuthority()
        self._binder = binder or EncryptedRemoteBinder()
        self._detector = detector or ChangeDetector()
        self._which = which
        self._clock = clock
        self._engine = RunEngine(config, clock=clock)

    def run(self) -> RunResult:
        return self._engine.run(
            "backup",
            BackupState,
            lock_target=self._config.graph_path,
            step=self._cycle,
            housekeeping=self._prune_logs,
        )

    def _cycle(self, trail: StateTrail) -> Outcome:
        config = self._config
        LOG.info("Starting Logseq encrypted backup")
        LOG.info("Graph path: %s", config.graph_path)
        LOG.info("Remote: %s (%s)", config.remote_url, config.remote_name)
        LOG.info("Recipients: %s", ", ".join(config.recipients))

        trail.enter(BackupState.CHECKING_DEPENDENCIES)
        run_preflight(self._keys, config.recipients, which=self._which)

        trail.enter(BackupState.ENSURING_REPO)
        repo: VersionStore = self._store.ensure_initialized(
            config.graph_path,
            identity=config.backup_identity,
            ignore_patterns=config.ignore_patterns,
            branch=config.branch,
        )

        trail.enter(BackupState.BINDING_REMOTE)
        self._binder.ensure(repo, config.remote_name, config.remote_url, config.recipients)

        trail.enter(BackupState.DETECTING_CHANGES)
        if not self._detector.detect(repo):
            trail.enter(BackupState.SKIPPING)
            LOG.info("No changes detected, skipping backup")
            return Outcome(RunStatus.SKIPPED)

        trail.enter(BackupState.COMMITTING)
        LOG.info("Adding files to git")
        repo.stage_all()
        message = self._clock().strftime(COMMIT_MESSAGE_FORMAT)
        LOG.info("Committing changes: %s", message)
        try:
            commit_id = repo.commit(message)
        except EmptyCommit:
            trail.enter(BackupState.SKIPPING)
            LOG.info("Changes disappeared before commit, skipping backup")
            return Outcome(RunStatus.SKIPPED)

        trail.enter(BackupState.PUSHING)
        LOG.info("Pushing %s to encrypted remote %s", config.branch, config.remote_name)
        output = repo.push(config.remote_name, config.branch)
        if output:
            LOG.info("%s", output)
        LOG.info("Backup of commit %s pushed", commit_id[:12])
        return Outcome(RunStatus.DONE, commit_id=commit_id)

    def _prune_logs(self) -> None:
        removed = prune_logs(self._config.log_dir, self._config.max_log_age_days)
        LOG.info("Cleaned up %d old log file(s)", len(removed))
