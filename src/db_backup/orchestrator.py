from __future__ import annotations

import logging
import time
from functools import partial
from typing import Callable, Optional

from .config import RunConfiguration
from .dumps import create_adapter
from .job_engine import AdapterFactory, JobEngine, RunOutcome, SnapshotStore
from .notify import WebhookNotifier
from .report import RunReport, build_report, utc_now
from .restic import ResticClient
from .retention import RetentionPolicy
from .storage import BackupLayout, build_layout

LOG = logging.getLogger(__name__)

Clock = Callable[[], float]


class BackupOrchestrator:
    """Runs one backup attempt end to end and reports the result."""

    def __init__(
        self,
        config: RunConfiguration,
        store: Optional[SnapshotStore] = None,
        notifier: Optional[WebhookNotifier] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        layout: Optional[BackupLayout] = None,
        monotonic: Clock = time.monotonic,
    ) -> None:
        self._config = config
        self._engine = config.require_engine()
        self._layout = layout or build_layout(config.paths)
        self._store = store or ResticClient(config.restic, self._layout)
        self._notifier = notifier or WebhookNotifier(config.webhook)
        self._adapter_factory = adapter_factory or partial(create_adapter, layout=self._layout)
        self._monotonic = monotonic
        self.last_report: Optional[RunReport] = None

    def run_once(self) -> int:
        started_at = utc_now()
        started = self._monotonic()
        LOG.info("Starting %s backup run", self._engine.value)

        self._layout.prepare()
        engine = JobEngine(
            adapter_factory=self._adapter_factory,
            store=self._store,
            retention_policy=RetentionPolicy.from_settings(self._config.retention),
        )
        outcome = engine.run(self._config)

        finished_at = utc_now()
        duration = max(int(self._monotonic() - started), 0)

        report = self._build_report(outcome, started_at, finished_at, duration)
        self.last_report = report
        if report.success:
            LOG.info("Backup succeeded in %ss (snapshot %s)", duration, report.snapshot_id or "unknown")
        else:
            LOG.error("%s after %ss", report.message, duration)

        self._notifier.send(report)
        return outcome.exit_code

    def _build_report(self, outcome: RunOutcome, started_at, finished_at, duration: int) -> RunReport:
        snapshot_id = outcome.summary.snapshot_id
        if outcome.success and not snapshot_id:
            try:
                snapshot_id = self._store.latest_snapshot_id()
            except Exception as exc:  # noqa: BLE001
                LOG.warning("Could not look up latest snapshot id: %s", exc)
                snapshot_id = None

        host = outcome.dump.host_hint if outcome.dump else self._config.default_host_hint()
        return build_report(
            exit_code=outcome.exit_code,
            started_at=started_at,
            finished_at=finished_at,
            duration_seconds=duration,
            repository=self._store.repository,
            db_type=self._engine.value,
            host=host,
            tags=list(self._config.restic.tags),
            summary=outcome.summary,
            snapshot_id=snapshot_id,
        )
