from __future__ import annotations

import logging
import os
import shlex
import sys
from typing import Callable, List

from .config import CONFIG_FILE_ENV
from .storage import BackupLayout

LOG = logging.getLogger(__name__)


def self_command(*args: str) -> List[str]:
    """Command line that re-invokes this CLI with the current interpreter."""
    return [sys.executable, "-m", "db_backup.cli", *args]


class ExecutionContext:
    """Decides whether a run happens in-process or under the unprivileged backup user."""

    def __init__(self, layout: BackupLayout, user: str) -> None:
        self._layout = layout
        self._user = user

    @staticmethod
    def is_privileged() -> bool:
        return os.geteuid() == 0

    def unprivileged_command(self) -> str:
        command = " ".join(shlex.quote(part) for part in self_command("run-once"))
        config_file = os.getenv(CONFIG_FILE_ENV)
        if config_file:
            command = f"{CONFIG_FILE_ENV}={shlex.quote(config_file)} {command}"
        return command

    def run_once_unprivileged(self, run: Callable[[], int]) -> int:
        if not self.is_privileged():
            return run()

        self._layout.hand_over(self._user)
        LOG.info("Dropping privileges to %s for backup run", self._user)
        os.execvp("su", ["su", "-s", "/bin/sh", self._user, "-c", self.unprivileged_command()])
        return 0
