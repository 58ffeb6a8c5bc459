"""Read branch and commit information for the working directory.

The store attaches the result to new screenshots as an opaque tag so agents
can later search by branch or commit.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

from models.screenshot_record import GitContext

LOGGER = logging.getLogger(__name__)


class GitContextProvider:
    """Callable returning the current `GitContext`, or None outside a repository.

    Args:
        cwd: Directory to run git in. Defaults to the process working directory.
        timeout: Seconds to wait for each git invocation.
    """

    def __init__(self, cwd: Optional[Path | str] = None, timeout: float = 5.0) -> None:
        self.cwd = str(cwd) if cwd is not None else None
        self.timeout = timeout
        self._is_repo: Optional[bool] = None

    def _git(self, *args: str) -> Optional[str]:
        try:
            completed = subprocess.run(
                ["git", *args],
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except (OSError, subprocess.SubprocessError):
            return None
        return completed.stdout.strip() or None

    def is_repo(self) -> bool:
        """Return True when the working directory is inside a git work tree (cached)."""
        if self._is_repo is None:
            self._is_repo = self._git("rev-parse", "--is-inside-work-tree") == "true"
            if self._is_repo:
                LOGGER.info("Git repo detected: %s", self._git("rev-parse", "--show-toplevel"))
        return self._is_repo

    def __call__(self) -> Optional[GitContext]:
        if not self.is_repo():
            return None
        context = GitContext(
            branch=self._git("rev-parse", "--abbrev-ref", "HEAD"),
            commit=self._git("rev-parse", "HEAD"),
            commit_short=self._git("rev-parse", "--short", "HEAD"),
            repo_root=self._git("rev-parse", "--show-toplevel"),
        )
        if not context.branch and not context.commit:
            return None
        return context
