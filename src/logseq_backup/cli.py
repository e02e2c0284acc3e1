from __future__ import annotations

import argparse
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import BackupConfig, ConfigurationError, load_config, resolve_config_path
from .engine import RunResult
from .errors import BackupError
from .journal import RunJournal
from .keys import GpgKeyAuthority
from .logger import configure_logging
from .orchestrator import BackupOrchestrator
from .preflight import run_preflight
from .restore import RestoreOrchestrator

LOG = logging.getLogger(__name__)

CONFIG_ERROR_EXIT = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="logseq-backup",
        description="Encrypted backup and restore of a Logseq graph over git-remote-gcrypt.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration YAML file (default: $LOGSEQ_BACKUP_CONFIG or "
        "~/.config/logseq-backup/config.yaml).",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Console log level (default INFO).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("backup", help="Run one encrypted backup cycle.")

    restore = commands.add_parser("restore", help="Restore the graph from the encrypted remote.")
    mode = restore.add_mutually_exclusive_group(required=True)
    mode.add_argument("--target", type=Path, help="Clone the graph into this directory.")
    mode.add_argument(
        "--pull-only",
        action="store_true",
        help="Pull the latest changes into the configured graph path.",
    )
    restore.add_argument(
        "--yes",
        action="store_true",
        help="Do not ask before restoring into a non-empty target directory.",
    )

    commands.add_parser("check", help="Validate configuration, tools and keys without changing anything.")
    return parser.parse_args(argv)


def prompt_confirm(prompt: str) -> bool:
    if not sys.stdin.isatty():
        LOG.warning("No terminal available to confirm: %s", prompt)
        return False
    reply = input(f"{prompt} (y/N): ")
    return reply.strip().lower() in {"y", "yes"}


def report(result: RunResult) -> int:
    elapsed = (result.completed_at - result.started_at).total_seconds()
    if result.success:
        LOG.info("%s %s in %.2fs (log: %s)", result.operation, result.status.value, elapsed, result.log_path)
    else:
        LOG.error(
            "%s %s: %s (log: %s)",
            result.operation,
            result.status.value,
            "; ".join(result.errors),
            result.log_path,
        )
    return result.exit_code


def run_check(config: BackupConfig) -> int:
    with RunJournal(config.log_dir, "check"):
        try:
            if not config.graph_path.is_dir():
                LOG.error("Logseq graph not found: %s", config.graph_path)
                return 1
            run_preflight(GpgKeyAuthority(), config.recipients, which=shutil.which)
        except BackupError as exc:
            LOG.error("Check failed: %s", exc.describe())
            return 1
        LOG.info("Setup test completed successfully")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    config_path = resolve_config_path(args.config)
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        LOG.error("Configuration error: %s", exc)
        return CONFIG_ERROR_EXIT

    if args.command == "check":
        return run_check(config)

    if args.command == "backup":
        return report(BackupOrchestrator(config).run())

    confirm = (lambda _prompt: True) if args.yes else prompt_confirm
    orchestrator = RestoreOrchestrator(config, confirm=confirm)
    if args.pull_only:
        return report(orchestrator.pull())
    return report(orchestrator.clone(args.target))


if __name__ == "__main__":
    sys.exit(main())
