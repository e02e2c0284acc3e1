"""Per-run operation journal and its age-based housekeeping.

Every orchestrator run writes one new file under the log directory, named
after the operation and the run's start time. A second run started in the
same second gets a numeric suffix::

    backup-20260418-000000.log
    backup-20260418-000000-1.log

Records look like::

    [2026-04-18 00:00:00] [INFO] Starting Logseq encrypted backup
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

LOG = logging.getLogger(__name__)

PACKAGE_LOGGER = "logseq_backup"
JOURNAL_KINDS = ("backup", "restore", "check")
RECORD_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
RECORD_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


def level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno, logging.getLevelName(levelno))


@dataclass(frozen=True)
class OperationRecord:
    timestamp: datetime
    level: str
    message: str


class _JournalFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        record.levelname = level_name(record.levelno)
        try:
            return super().format(record)
        finally:
            record.levelname = original


class _RecordCollector(logging.Handler):
    def __init__(self, records: List[OperationRecord]) -> None:
        super().__init__(level=logging.INFO)
        self._records = records

    def emit(self, record: logging.LogRecord) -> None:
        self._records.append(
            OperationRecord(
                timestamp=datetime.fromtimestamp(record.created),
                level=level_name(record.levelno),
                message=record.getMessage(),
            )
        )


class RunJournal:
    """Routes the package's log records into a dedicated file for one run."""

    def __init__(self, log_dir: Path, operation: str, started_at: Optional[datetime] = None) -> None:
        self.log_dir = log_dir
        self.operation = operation
        self.started_at = started_at or datetime.now()
        self.stem = f"{operation}-{self.started_at.strftime('%Y%m%d-%H%M%S')}"
        self.path = log_dir / f"{self.stem}.log"
        self.records: List[OperationRecord] = []
        self._handlers: List[logging.Handler] = []
        self._previous_level: Optional[int] = None

    def _open_new_file(self) -> logging.FileHandler:
        # Same-second runs get -1, -2, ... suffixes; an existing file is never reopened.
        attempt = 0
        while True:
            candidate = self.log_dir / (f"{self.stem}.log" if attempt == 0 else f"{self.stem}-{attempt}.log")
            try:
                handler = logging.FileHandler(candidate, mode="x", encoding="utf-8")
            except FileExistsError:
                attempt += 1
                continue
            self.path = candidate
            return handler

    def __enter__(self) -> "RunJournal":
        self.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = self._open_new_file()
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(_JournalFormatter(RECORD_FORMAT, datefmt=RECORD_DATEFMT))
        self._handlers = [file_handler, _RecordCollector(self.records)]

        package_logger = logging.getLogger(PACKAGE_LOGGER)
        self._previous_level = package_logger.level
        if package_logger.getEffectiveLevel() > logging.INFO:
            package_logger.setLevel(logging.INFO)
        for handler in self._handlers:
            package_logger.addHandler(handler)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        for handler in self._handlers:
            package_logger.removeHandler(handler)
            handler.close()
        self._handlers = []
        if self._previous_level is not None:
            package_logger.setLevel(self._previous_level)


def prune_logs(log_dir: Path, max_age_days: int, now: Optional[datetime] = None) -> List[Path]:
    """Delete journal files older than ``max_age_days`` and return what was removed."""
    if max_age_days <= 0 or not log_dir.exists():
        return []

    cutoff = (now or datetime.now()) - timedelta(days=max_age_days)
    removed: List[Path] = []
    for kind in JOURNAL_KINDS:
        for child in sorted(log_dir.glob(f"{kind}-*.log")):
            if not child.is_file():
                continue
            modified = datetime.fromtimestamp(child.stat().st_mtime)
            if modified < cutoff:
                LOG.debug("Removing expired log %s", child)
                child.unlink()
                removed.append(child)
    return removed
