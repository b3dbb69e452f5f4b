from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from .config import ConfigurationError, DatabaseEngine, RunConfiguration
from .dumps import DumpAdapter, DumpResult
from .errors import BackupError, DumpFailure, RetentionFailure, UploadFailure
from .restic import SnapshotSummary, snapshot_tags
from .retention import RetentionPolicy, enforce_retention

LOG = logging.getLogger(__name__)

AdapterFactory = Callable[[DatabaseEngine], DumpAdapter]


class SnapshotStore(Protocol):
    @property
    def repository(self) -> str:
        ...

    def ensure_initialized(self) -> None:
        ...

    def snapshot(self, path: Path, tags: Sequence[str]) -> SnapshotSummary:
        ...

    def forget(self, daily: int, weekly: int, monthly: int, yearly: int, prune: bool) -> None:
        ...

    def latest_snapshot_id(self) -> Optional[str]:
        ...


class RunState(str, Enum):
    IDLE = "idle"
    DISPATCH = "dispatch"
    DUMPING = "dumping"
    UPLOADING = "uploading"
    RETAINING = "retaining"
    REPORTING = "reporting"
    FAILED = "failed"


@dataclass
class RunOutcome:
    exit_code: int = 0
    states: List[RunState] = field(default_factory=lambda: [RunState.IDLE])
    dump: Optional[DumpResult] = None
    summary: SnapshotSummary = field(default_factory=SnapshotSummary)
    failed_state: Optional[RunState] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def state(self) -> RunState:
        return self.states[-1]

    def enter(self, state: RunState) -> None:
        LOG.debug("Run state %s -> %s", self.state.value, state.value)
        self.states.append(state)

    def fail(self, exc: BackupError) -> None:
        self.failed_state = self.state
        self.exit_code = exc.exit_code
        self.error = str(exc)
        self.enter(RunState.FAILED)


class JobEngine:
    """Runs dump, snapshot and retention for one backup attempt.

    The engine workspace is removed on every exit path, including unexpected
    errors. Reporting is left to the caller, which always receives an outcome.
    """

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        store: SnapshotStore,
        retention_policy: RetentionPolicy,
    ) -> None:
        self._adapter_factory = adapter_factory
        self._store = store
        self._retention = retention_policy

    def run(self, config: RunConfiguration) -> RunOutcome:
        outcome = RunOutcome()

        outcome.enter(RunState.DISPATCH)
        try:
            adapter = self._adapter_factory(config.engine)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        try:
            outcome.enter(RunState.DUMPING)
            outcome.dump = adapter.produce(config)

            outcome.enter(RunState.UPLOADING)
            self._store.ensure_initialized()
            tags = snapshot_tags(config.restic.tags, outcome.dump.engine.value, outcome.dump.host_hint)
            outcome.summary = self._store.snapshot(outcome.dump.artifact_path, tags)

            outcome.enter(RunState.RETAINING)
            enforce_retention(self._store, self._retention)
        except DumpFailure as exc:
            LOG.error("Dump failed: %s (exit code %s)", exc, exc.exit_code)
            outcome.fail(exc)
        except UploadFailure as exc:
            LOG.error("Upload failed: %s (exit code %s)", exc, exc.exit_code)
            outcome.fail(exc)
        except RetentionFailure as exc:
            LOG.error("Retention failed: %s (exit code %s); snapshot was kept", exc, exc.exit_code)
            outcome.fail(exc)
        except Exception as exc:  # noqa: BLE001
            LOG.exception("Unexpected error during %s", outcome.state.value)
            outcome.fail(BackupError(str(exc)))
        finally:
            _cleanup_workspace(adapter.workspace_dir)

        outcome.enter(RunState.REPORTING)
        return outcome


def _cleanup_workspace(workspace: Path) -> None:
    if workspace.exists():
        shutil.rmtree(workspace, ignore_errors=True)
        LOG.debug("Removed workspace %s", workspace)
