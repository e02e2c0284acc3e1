from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from .errors import BackupError, MissingRecipients, RemoteConfigFailure

LOG = logging.getLogger(__name__)

GCRYPT_SCHEME = "gcrypt::"


def encrypted_locator(locator: str) -> str:
    """Route ``locator`` through git-remote-gcrypt; the locator itself is passed through as-is."""
    if locator.startswith(GCRYPT_SCHEME):
        return locator
    return f"{GCRYPT_SCHEME}{locator}"


class RemoteConfigurable(Protocol):
    def has_remote(self, name: str) -> bool:
        ...

    def remove_remote(self, name: str) -> None:
        ...

    def configure_remote(self, name: str, locator: str, participants: Sequence[str]) -> None:
        ...


class EncryptedRemoteBinder:
    """Binds a named remote to the encrypted transport with an exact recipient set.

    The remote is dropped and re-created on every call. A previous binding
    may be partial or point at other recipients, and re-adding is cheap next
    to a push.
    """

    def ensure(
        self,
        repo: RemoteConfigurable,
        name: str,
        locator: str,
        participants: Sequence[str],
    ) -> str:
        recipients = _ordered_unique(participants)
        if not recipients:
            raise MissingRecipients(
                f"No recipients configured for remote '{name}'", operation="bind-remote"
            )

        target = encrypted_locator(locator)
        try:
            if repo.has_remote(name):
                LOG.info("Removing existing %s remote", name)
                repo.remove_remote(name)
            LOG.info("Adding encrypted remote %s", name)
            repo.configure_remote(name, target, recipients)
        except RemoteConfigFailure:
            raise
        except BackupError as exc:
            raise RemoteConfigFailure(
                f"Could not bind remote '{name}'", operation="bind-remote", detail=str(exc.detail or exc)
            ) from exc

        LOG.info("Encrypted remote configured for %d recipient(s)", len(recipients))
        return target


def _ordered_unique(values: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.append(value)
    return seen
