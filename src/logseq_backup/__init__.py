"""Encrypted backup and restore of a Logseq graph."""

from __future__ import annotations

from .config import load_config, BackupConfig  # noqa: F401
from .orchestrator import BackupOrchestrator  # noqa: F401
from .restore import RestoreOrchestrator  # noqa: F401

__version__ = "0.1.0"
