from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Type

from .config import BackupConfig
from .errors import AlreadyRunning, BackupError, ErrorKind
from .journal import OperationRecord, RunJournal
from .lock import RunLock

LOG = logging.getLogger(__name__)


class BackupState(str, Enum):
    START = "START"
    CHECKING_DEPENDENCIES = "CHECKING_DEPENDENCIES"
    ENSURING_REPO = "ENSURING_REPO"
    BINDING_REMOTE = "BINDING_REMOTE"
    DETECTING_CHANGES = "DETECTING_CHANGES"
    COMMITTING = "COMMITTING"
    PUSHING = "PUSHING"
    SKIPPING = "SKIPPING"
    DONE = "DONE"
    FAILED = "FAILED"


class RestoreState(str, Enum):
    START = "START"
    CHECKING_DEPENDENCIES = "CHECKING_DEPENDENCIES"
    PREPARING_TARGET = "PREPARING_TARGET"
    CLONING = "CLONING"
    CONFIGURING = "CONFIGURING"
    VERIFYING = "VERIFYING"
    PULLING = "PULLING"
    DONE = "DONE"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ALREADY_RUNNING = "already_running"


EXIT_CODES = {
    RunStatus.DONE: 0,
    RunStatus.SKIPPED: 0,
    RunStatus.CANCELLED: 0,
    RunStatus.FAILED: 1,
    RunStatus.ALREADY_RUNNING: 3,
}


@dataclass
class Outcome:
    status: RunStatus
    commit_id: Optional[str] = None


@dataclass
class RunResult:
    operation: str
    status: RunStatus
    started_at: datetime
    completed_at: datetime
    states: List[str] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    errors: List[str] = field(default_factory=list)
    commit_id: Optional[str] = None
    log_path: Optional[Path] = None
    records: List[OperationRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return EXIT_CODES[self.status] == 0

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]

    @property
    def final_state(self) -> Optional[str]:
        return self.states[-1] if self.states else None


class StateTrail:
    """Ordered record of the states one run went through."""

    def __init__(self, operation: str, start: Enum) -> None:
        self.operation = operation
        self.states: List[str] = [start.value]

    @property
    def current(self) -> str:
        return self.states[-1]

    def enter(self, state: Enum) -> None:
        LOG.debug("%s: %s -> %s", self.operation, self.current, state.value)
        self.states.append(state.value)


Step = Callable[[StateTrail], Outcome]


class RunEngine:
    """Runs one orchestrator step function under a journal and a run lock.

    Every ``BackupError`` ends the run as ``failed`` except lock contention,
    which ends it as ``already_running``. Nothing is retried.
    """

    def __init__(self, config: BackupConfig, clock: Callable[[], datetime] = datetime.now) -> None:
        self._config = config
        self._clock = clock

    def run(
        self,
        operation: str,
        states: Type[Enum],
        lock_target: Path,
        step: Step,
        housekeeping: Optional[Callable[[], None]] = None,
    ) -> RunResult:
        started_at = self._clock()
        trail = StateTrail(operation, states.START)
        status = RunStatus.FAILED
        commit_id: Optional[str] = None
        error_kind: Optional[ErrorKind] = None
        errors: List[str] = []

        with RunJournal(self._config.log_dir, operation, started_at) as journal:
            try:
                with RunLock(self._config.state_dir, lock_target):
                    outcome = step(trail)
            except AlreadyRunning as exc:
                status = RunStatus.ALREADY_RUNNING
                error_kind = exc.kind
                errors.append(exc.describe())
                LOG.error("%s not started: %s", operation.capitalize(), exc.describe())
            except BackupError as exc:
                error_kind = exc.kind
                errors.append(exc.describe())
                LOG.error("%s failed during %s: %s", operation.capitalize(), trail.current, exc.describe())
                trail.enter(states.FAILED)
            except Exception as exc:  # noqa: BLE001
                errors.append(str(exc))
                LOG.error("%s failed during %s: %s", operation.capitalize(), trail.current, exc)
                LOG.debug("Traceback:\n%s", traceback.format_exc())
                trail.enter(states.FAILED)
            else:
                status = outcome.status
                commit_id = outcome.commit_id
                if housekeeping is not None:
                    try:
                        housekeeping()
                    except Exception as exc:  # noqa: BLE001
                        LOG.warning("Housekeeping after %s failed: %s", operation, exc)
                trail.enter(states.DONE)
                LOG.info("=== %s completed successfully (%s) ===", operation.capitalize(), status.value)

        return RunResult(
            operation=operation,
            status=status,
            started_at=started_at,
            completed_at=self._clock(),
            states=list(trail.states),
            error_kind=error_kind,
            errors=errors,
            commit_id=commit_id,
            log_path=journal.path,
            records=list(journal.records),
        )
