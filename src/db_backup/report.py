from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .restic import SnapshotSummary

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class RunReport:
    status: str
    message: str
    started_at: datetime
    finished_at: datetime
    duration_seconds: int
    repository: str
    db_type: str
    host: str
    tags: List[str] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    data_added: int = 0
    total_bytes_processed: int = 0
    total_duration: float = 0.0
    files_new: int = 0
    files_changed: int = 0
    files_unmodified: int = 0

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "startedAt": format_timestamp(self.started_at),
            "finishedAt": format_timestamp(self.finished_at),
            "durationSeconds": int(self.duration_seconds),
            "repository": self.repository,
            "dbType": self.db_type,
            "host": self.host,
            "tags": list(self.tags),
            "snapshotId": self.snapshot_id or None,
            "dataAddedBytes": int(self.data_added),
            "totalBytesProcessed": int(self.total_bytes_processed),
            "totalDurationSeconds": int(self.total_duration),
            "filesNew": int(self.files_new),
            "filesChanged": int(self.files_changed),
            "filesUnmodified": int(self.files_unmodified),
        }


def build_report(
    *,
    exit_code: int,
    started_at: datetime,
    finished_at: datetime,
    duration_seconds: int,
    repository: str,
    db_type: str,
    host: str,
    tags: List[str],
    summary: SnapshotSummary,
    snapshot_id: Optional[str],
) -> RunReport:
    if exit_code == 0:
        status, message = STATUS_SUCCESS, "Backup succeeded"
    else:
        status, message = STATUS_FAILED, f"Backup failed (exitcode={exit_code})"
    return RunReport(
        status=status,
        message=message,
        started_at=started_at,
        finished_at=finished_at,
        duration_seconds=max(int(duration_seconds), 0),
        repository=repository,
        db_type=db_type,
        host=host,
        tags=list(tags),
        snapshot_id=snapshot_id or None,
        data_added=summary.data_added,
        total_bytes_processed=summary.total_bytes_processed,
        total_duration=summary.total_duration,
        files_new=summary.files_new,
        files_changed=summary.files_changed,
        files_unmodified=summary.files_unmodified,
    )
