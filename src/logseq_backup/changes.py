from __future__ import annotations

import logging
from typing import List, Protocol

LOG = logging.getLogger(__name__)


class ChangeSource(Protocol):
    def pending_paths(self) -> List[str]:
        ...


class ChangeDetector:
    """Answers whether the working tree differs from the last commit.

    Additions, deletions, content edits, permission-mode changes and staged
    but uncommitted changes all count. Paths matched by the exclusion list
    never do. Nothing is cached between calls.
    """

    def detect(self, repo: ChangeSource) -> bool:
        paths = repo.pending_paths()
        if paths:
            LOG.info("Detected %d changed path(s)", len(paths))
            for path in paths[:20]:
                LOG.debug("Changed: %s", path)
        return bool(paths)
