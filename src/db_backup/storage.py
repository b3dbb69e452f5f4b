from __future__ import annotations

import logging
import os
import pwd
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from .config import PathSettings

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupLayout:
    """On-disk layout under BACKUP_DIR shared by dumps and restic."""

    backup_dir: Path
    work_dir: Path

    @property
    def cache_dir(self) -> Path:
        return self.backup_dir / ".cache"

    @property
    def tmp_dir(self) -> Path:
        return self.backup_dir / ".tmp"

    @property
    def cron_log(self) -> Path:
        return self.backup_dir / "cron.log"

    @property
    def cron_env_file(self) -> Path:
        return self.backup_dir / "cron-env.yaml"

    @property
    def restic_capture(self) -> Path:
        return self.work_dir / "restic-backup.json"

    def prepare(self) -> None:
        for path in (self.backup_dir, self.work_dir, self.cache_dir, self.tmp_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                LOG.warning("Could not create %s: %s", path, exc)

    def fresh_workspace(self, name: str) -> Path:
        workspace = self.work_dir / name
        if workspace.exists():
            LOG.info("Removing stale workspace %s", workspace)
            shutil.rmtree(workspace, ignore_errors=True)
        workspace.mkdir(parents=True, exist_ok=True)
        return workspace

    def child_environment(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        # restic needs a writable HOME and cache regardless of the invoking user.
        env = os.environ.copy()
        env.update(
            {
                "HOME": str(self.backup_dir),
                "RESTIC_CACHE_DIR": str(self.cache_dir),
                "XDG_CACHE_HOME": str(self.cache_dir),
                "TMPDIR": str(self.tmp_dir),
            }
        )
        if extra:
            env.update(extra)
        return env

    def hand_over(self, user: str) -> None:
        """Best-effort chown of the writable paths to the unprivileged backup user."""
        try:
            record = pwd.getpwnam(user)
        except KeyError:
            LOG.warning("Backup user %s does not exist; skipping ownership change", user)
            return

        self.cron_log.touch(exist_ok=True)
        for root in (self.work_dir, self.cache_dir, self.tmp_dir, self.cron_log, self.cron_env_file):
            _chown_tree(root, record.pw_uid, record.pw_gid)


def _chown_tree(root: Path, uid: int, gid: int) -> None:
    if not root.exists():
        return
    paths = [root]
    if root.is_dir():
        paths.extend(root.rglob("*"))
    for path in paths:
        try:
            os.chown(path, uid, gid, follow_symlinks=False)
        except OSError as exc:
            LOG.debug("chown %s failed: %s", path, exc)


def build_layout(settings: PathSettings) -> BackupLayout:
    return BackupLayout(
        backup_dir=settings.backup_dir.expanduser(),
        work_dir=settings.work_dir.expanduser(),
    )
