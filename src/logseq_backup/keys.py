"""Key authority backed by the local GnuPG keyring.

Only used for pre-flight validation. Encryption itself happens inside the
git-remote-gcrypt transport, which talks to gpg on its own.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import DependencyMissing, KeyNotFound

LOG = logging.getLogger(__name__)

UNUSABLE_VALIDITY = {"e", "r", "d", "i"}


@dataclass(frozen=True)
class KeyHandle:
    identity: str
    fingerprint: str
    user_ids: Tuple[str, ...] = ()
    validity: str = ""
    capabilities: str = ""

    @property
    def usable(self) -> bool:
        if self.validity in UNUSABLE_VALIDITY:
            return False
        if "D" in self.capabilities:
            return False
        return "E" in self.capabilities


def parse_colon_listing(identity: str, output: str) -> List[KeyHandle]:
    """Turn ``gpg --with-colons --list-keys`` output into key handles."""
    keys: List[KeyHandle] = []
    current: Optional[dict] = None

    def _flush() -> None:
        if current is not None and current["fingerprint"]:
            keys.append(KeyHandle(identity=identity, **dict(current, user_ids=tuple(current["user_ids"]))))

    for line in output.splitlines():
        fields = line.split(":")
        record = fields[0]
        if record == "pub":
            _flush()
            current = {
                "fingerprint": "",
                "user_ids": [],
                "validity": fields[1] if len(fields) > 1 else "",
                "capabilities": fields[11] if len(fields) > 11 else "",
            }
        elif current is None:
            continue
        elif record == "fpr" and not current["fingerprint"] and len(fields) > 9:
            current["fingerprint"] = fields[9]
        elif record == "uid" and len(fields) > 9:
            current["user_ids"].append(fields[9])
    _flush()
    return keys


class GpgKeyAuthority:
    def __init__(self, gpg_binary: str = "gpg", homedir: Optional[Path] = None) -> None:
        self._gpg = gpg_binary
        self._homedir = homedir

    def _command(self, args: Sequence[str]) -> List[str]:
        cmd = [self._gpg, "--batch", "--with-colons"]
        if self._homedir:
            cmd.extend(["--homedir", str(self._homedir)])
        cmd.extend(args)
        return cmd

    def resolve(self, identity: str) -> KeyHandle:
        cmd = self._command(["--list-keys", identity])
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise DependencyMissing(
                f"{self._gpg} is not installed", operation="resolve-key", detail=str(exc)
            ) from exc

        if result.returncode != 0:
            raise KeyNotFound(
                f"GPG key not found: {identity}", operation="resolve-key", detail=result.stderr
            )

        keys = parse_colon_listing(identity, result.stdout)
        if not keys:
            raise KeyNotFound(f"GPG key not found: {identity}", operation="resolve-key")

        for key in keys:
            if key.usable:
                return key
        LOG.debug("Keys for %s found but none usable: %s", identity, [k.fingerprint for k in keys])
        return keys[0]

    def has_usable_key(self, identity: str) -> bool:
        try:
            return self.resolve(identity).usable
        except KeyNotFound:
            return False
