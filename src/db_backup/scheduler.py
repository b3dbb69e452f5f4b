from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import yaml
from croniter import croniter
from zoneinfo import ZoneInfo

from .config import CONFIG_FILE_ENV, RunConfiguration, snapshot_settings
from .execution import self_command
from .storage import BackupLayout

LOG = logging.getLogger(__name__)

DEFAULT_SPOOL_DIR = Path(os.getenv("CRON_SPOOL_DIR", "/etc/crontabs"))
CROND_COMMAND = ["crond", "-f", "-l", "8"]
CROND_STARTUP_SECONDS = 2
CROND_POLL_SECONDS = 60

MODE_CRON = "cron"
MODE_INTERVAL = "interval"
MODE_ONCE = "once"


class Scheduler:
    """Drives backup runs once, on a fixed interval, or through the system cron daemon."""

    def __init__(
        self,
        config: RunConfiguration,
        run_once: Callable[[], int],
        layout: BackupLayout,
        stop_event: Optional[threading.Event] = None,
        spool_dir: Path = DEFAULT_SPOOL_DIR,
        crond_command: Optional[List[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._config = config
        self._run_once = run_once
        self._layout = layout
        self._stop_event = stop_event or threading.Event()
        self._spool_dir = spool_dir
        self._crond_command = crond_command or list(CROND_COMMAND)
        self._environ = environ

    @property
    def mode(self) -> str:
        if self._config.schedule.cron:
            return MODE_CRON
        if self._config.schedule.interval_seconds > 0:
            return MODE_INTERVAL
        return MODE_ONCE

    def start(self, handle_signals: bool = True) -> int:
        if handle_signals:
            self._install_signal_handlers()
        mode = self.mode
        if mode == MODE_CRON:
            return self.run_cron()
        if mode == MODE_INTERVAL:
            return self.run_interval()
        LOG.info("BACKUP_INTERVAL_SECONDS=0 -> one-time backup")
        return self._run_once()

    def stop(self) -> None:
        self._stop_event.set()

    # Interval mode ---------------------------------------------------------
    def run_interval(self) -> int:
        interval = self._config.schedule.interval_seconds
        while not self._stop_event.is_set():
            try:
                exit_code = self._run_once()
            except Exception:  # noqa: BLE001
                LOG.exception("Backup run raised an unexpected error")
                exit_code = 1
            if exit_code != 0:
                LOG.warning("Backup failed (see webhook/logs). Next attempt in %ss", interval)
            LOG.info("Waiting %ss until next run", interval)
            if self._stop_event.wait(interval):
                break

        LOG.info("Scheduler stopped")
        return 0

    # Cron mode -------------------------------------------------------------
    def run_cron(self) -> int:
        schedule = self._config.schedule.cron or ""
        LOG.info("Using CRON_SCHEDULE='%s'", schedule)
        self._layout.prepare()
        env_file = self.write_settings_snapshot()
        crontab = self.install_crontab(env_file)
        self._layout.hand_over(self._config.schedule.backup_user)
        LOG.info("Installed crontab %s with schedule: %s", crontab, schedule)
        LOG.info("Next run scheduled for %s", self.next_occurrence().isoformat())

        LOG.info("Starting crond")
        crond = subprocess.Popen(self._crond_command)
        if self._stop_event.wait(CROND_STARTUP_SECONDS):
            return self._terminate(crond)

        while crond.poll() is None:
            if self._stop_event.wait(CROND_POLL_SECONDS):
                return self._terminate(crond)

        LOG.error("crond died, exiting")
        return 1

    def crontab_line(self, env_file: Path) -> str:
        command = " ".join(shlex.quote(part) for part in self_command("run-once-as-backups"))
        log_file = shlex.quote(str(self._layout.cron_log))
        return (
            f"{self._config.schedule.cron} {CONFIG_FILE_ENV}={shlex.quote(str(env_file))} "
            f"{command} 2>&1 | tee -a {log_file} /proc/1/fd/1"
        )

    def install_crontab(self, env_file: Path) -> Path:
        self._spool_dir.mkdir(parents=True, exist_ok=True)
        crontab = self._spool_dir / "root"
        crontab.write_text(self.crontab_line(env_file) + "\n", encoding="utf-8")
        crontab.chmod(0o644)
        return crontab

    def write_settings_snapshot(self) -> Path:
        """Persist the current settings so each cron occurrence sees the same configuration."""
        path = self._layout.cron_env_file
        path.parent.mkdir(parents=True, exist_ok=True)
        settings = snapshot_settings(self._environ)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yaml.safe_dump(settings, fh, default_flow_style=False, sort_keys=True)
        os.chmod(path, 0o600)
        return path

    def next_occurrence(self, reference: Optional[datetime] = None) -> datetime:
        timezone = ZoneInfo(self._config.schedule.timezone)
        reference = reference or datetime.now(timezone)
        return croniter(self._config.schedule.cron, reference).get_next(datetime)

    # Internal helpers ------------------------------------------------------
    def _terminate(self, crond: "subprocess.Popen[bytes]") -> int:
        LOG.info("Stopping crond")
        crond.terminate()
        try:
            crond.wait(timeout=10)
        except subprocess.TimeoutExpired:
            crond.kill()
        LOG.info("Scheduler stopped")
        return 0

    def _install_signal_handlers(self) -> None:
        def _handle_signal(signum: int, _frame: Optional[object]) -> None:
            LOG.info("Received signal %s; stopping scheduler", signum)
            self._stop_event.set()

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)
