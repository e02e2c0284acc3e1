from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_ENV_VAR = "LOGSEQ_BACKUP_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/logseq-backup/config.yaml")
DEFAULT_STATE_DIR = Path("~/.local/state/logseq-backup")

DEFAULT_IGNORE_PATTERNS: Tuple[str, ...] = (
    "logseq/",
    "*.log",
    "*.tmp",
    ".DS_Store",
    "Thumbs.db",
)
DEFAULT_EXPECTED_LAYOUT: Tuple[str, ...] = ("journals", "pages", "logseq")


class ConfigurationError(Exception):
    """Raised when the backup configuration is missing or invalid."""


class Identity(BaseModel):
    """Name/email pair recorded as the author of commits made by a run."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str

    @field_validator("name", "email")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class BackupConfig(BaseModel):
    """Immutable configuration context resolved once per run."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    graph_path: Path = Field(description="Local note graph kept under version control.")
    remote_url: str = Field(description="Remote locator, without the transport scheme prefix.")
    recipients: Tuple[str, ...] = Field(description="GPG identities allowed to decrypt the remote.")

    remote_name: str = "backup"
    restore_remote_name: str = "origin"
    branch: str = "master"
    log_dir: Path = DEFAULT_STATE_DIR / "logs"
    state_dir: Path = DEFAULT_STATE_DIR
    max_log_age_days: int = 30
    backup_identity: Identity = Identity(name="Logseq Backup", email="backup@logseq.local")
    restore_identity: Identity = Identity(name="Logseq Restore", email="restore@logseq.local")
    ignore_patterns: Tuple[str, ...] = DEFAULT_IGNORE_PATTERNS
    expected_layout: Tuple[str, ...] = DEFAULT_EXPECTED_LAYOUT

    @field_validator("graph_path", "log_dir", "state_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if value is None or not str(value).strip():
            raise ValueError("path must not be empty")
        return Path(str(value)).expanduser()

    @field_validator("remote_url", "remote_name", "restore_remote_name", "branch")
    @classmethod
    def _require_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("recipients", mode="before")
    @classmethod
    def _normalise_recipients(cls, value: Any) -> Tuple[str, ...]:
        if isinstance(value, str):
            value = value.split()
        if not value:
            raise ValueError("at least one recipient identity is required")
        recipients = []
        for item in value:
            identity = str(item).strip()
            if not identity:
                raise ValueError("recipient identities must not be blank")
            if identity not in recipients:
                recipients.append(identity)
        return tuple(recipients)

    @field_validator("max_log_age_days")
    @classmethod
    def _positive_age(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_log_age_days must be positive")
        return value


def resolve_config_path(explicit: Optional[Union[str, Path]] = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: Path) -> BackupConfig:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration in {path} must be a mapping")

    try:
        return BackupConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
