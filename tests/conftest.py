"""Shared fixtures and fakes for the backup orchestrator tests."""
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from db_backup.config import DatabaseEngine, RunConfiguration, load_config
from db_backup.dumps import DumpAdapter, DumpResult
from db_backup.errors import DumpFailure, RetentionFailure, UploadFailure
from db_backup.restic import SnapshotSummary
from db_backup.storage import BackupLayout, build_layout


class FakeStore:
    """In-memory stand-in for the restic client."""

    repository = "s3:https://s3.example.test/backups"

    def __init__(
        self,
        initialized: bool = False,
        summary: Optional[SnapshotSummary] = None,
        snapshot_exit_code: int = 0,
        forget_exit_code: int = 0,
        latest: Optional[str] = None,
        latest_raises: bool = False,
    ) -> None:
        self.initialized = initialized
        self.summary = summary or SnapshotSummary()
        self.snapshot_exit_code = snapshot_exit_code
        self.forget_exit_code = forget_exit_code
        self.latest = latest
        self.latest_raises = latest_raises
        self.init_calls = 0
        self.probe_calls = 0
        self.snapshots: List[tuple] = []
        self.forgets: List[tuple] = []
        self.latest_calls = 0

    def ensure_initialized(self) -> None:
        self.probe_calls += 1
        if not self.initialized:
            self.init_calls += 1
            self.initialized = True

    def snapshot(self, path: Path, tags: Sequence[str]) -> SnapshotSummary:
        self.snapshots.append((path, list(tags), path.exists()))
        if self.snapshot_exit_code:
            raise UploadFailure("restic backup failed", exit_code=self.snapshot_exit_code)
        return self.summary

    def forget(self, daily: int, weekly: int, monthly: int, yearly: int, prune: bool) -> None:
        self.forgets.append((daily, weekly, monthly, yearly, prune))
        if self.forget_exit_code:
            raise RetentionFailure("restic forget failed", exit_code=self.forget_exit_code)

    def latest_snapshot_id(self) -> Optional[str]:
        self.latest_calls += 1
        if self.latest_raises:
            raise RuntimeError("restic snapshots failed")
        return self.latest


class FakeAdapter(DumpAdapter):
    """Writes a small artifact into the engine workspace, or fails like a dump tool."""

    def __init__(
        self,
        layout: BackupLayout,
        engine: DatabaseEngine = DatabaseEngine.POSTGRES,
        exit_code: int = 0,
        host_hint: str = "db.internal",
    ) -> None:
        super().__init__(layout)
        self.engine = engine
        self.exit_code = exit_code
        self.host_hint = host_hint
        self.calls = 0

    def produce(self, config: RunConfiguration) -> DumpResult:
        self.calls += 1
        workspace = self._fresh_workspace()
        (workspace / "partial.sql").write_text("-- partial\n", encoding="utf-8")
        if self.exit_code:
            raise DumpFailure("pg_dump failed", exit_code=self.exit_code)
        artifact = workspace / "dump.sql"
        artifact.write_text("CREATE TABLE t (id int);\n", encoding="utf-8")
        return self._result(artifact, host_hint=self.host_hint)


class RecordingNotifier:
    def __init__(self) -> None:
        self.reports = []

    def send(self, report) -> bool:
        self.reports.append(report)
        return True


class StepClock:
    """Monotonic clock that advances a fixed step per call."""

    def __init__(self, step: float = 3.7) -> None:
        self.now = 100.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def base_env(tmp_path: Path) -> Dict[str, str]:
    return {
        "DB_TYPE": "postgres",
        "BACKUP_DIR": str(tmp_path / "backup"),
        "RESTIC_REPOSITORY": FakeStore.repository,
        "RESTIC_PASSWORD": "correct horse",
        "RESTIC_TAGS": "db,encrypted",
        "PGHOST": "db.internal",
    }


@pytest.fixture
def config(base_env: Dict[str, str]) -> RunConfiguration:
    return load_config(base_env)


@pytest.fixture
def layout(config: RunConfiguration) -> BackupLayout:
    result = build_layout(config.paths)
    result.prepare()
    return result
