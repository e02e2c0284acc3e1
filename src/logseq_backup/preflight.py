"""Pre-flight checks run before any repository is touched."""

from __future__ import annotations

import logging
import shutil
from typing import Callable, List, Optional, Protocol, Sequence

from .errors import DependencyMissing, KeyNotFound
from .keys import KeyHandle

LOG = logging.getLogger(__name__)

REQUIRED_TOOLS = ("git", "git-remote-gcrypt")

Which = Callable[[str], Optional[str]]


class KeyAuthority(Protocol):
    def has_usable_key(self, identity: str) -> bool:
        ...

    def resolve(self, identity: str) -> KeyHandle:
        ...


def check_transport(which: Which = shutil.which) -> None:
    for tool in REQUIRED_TOOLS:
        if which(tool) is None:
            raise DependencyMissing(
                f"{tool} is not installed. Please install it first.",
                operation="check-dependencies",
            )
        LOG.info("%s found", tool)


def check_recipients(authority: KeyAuthority, recipients: Sequence[str]) -> List[KeyHandle]:
    handles: List[KeyHandle] = []
    for identity in recipients:
        if not authority.has_usable_key(identity):
            raise KeyNotFound(f"GPG key not found or not usable: {identity}", operation="check-keys")
        handle = authority.resolve(identity)
        LOG.info("GPG key verified: %s (%s)", identity, handle.fingerprint)
        handles.append(handle)
    return handles


def run_preflight(
    authority: KeyAuthority,
    recipients: Sequence[str],
    which: Which = shutil.which,
) -> List[KeyHandle]:
    check_transport(which)
    return check_recipients(authority, recipients)
