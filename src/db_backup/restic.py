from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .config import ResticSettings
from .errors import RetentionFailure, UploadFailure
from .storage import BackupLayout

LOG = logging.getLogger(__name__)

SUMMARY_MESSAGE_TYPE = "summary"


@dataclass(frozen=True)
class SnapshotSummary:
    snapshot_id: Optional[str] = None
    data_added: int = 0
    total_bytes_processed: int = 0
    total_duration: float = 0.0
    files_new: int = 0
    files_changed: int = 0
    files_unmodified: int = 0

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SnapshotSummary":
        return cls(
            snapshot_id=record.get("snapshot_id") or None,
            data_added=int(record.get("data_added") or 0),
            total_bytes_processed=int(record.get("total_bytes_processed") or 0),
            total_duration=float(record.get("total_duration") or 0),
            files_new=int(record.get("files_new") or 0),
            files_changed=int(record.get("files_changed") or 0),
            files_unmodified=int(record.get("files_unmodified") or 0),
        )


def iter_records(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """Decode restic's line-delimited JSON, skipping anything that is not an object."""
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            LOG.debug("Skipping non-JSON restic output: %s", line)
            continue
        if isinstance(record, dict):
            yield record


def last_summary(records: Iterable[Dict[str, Any]]) -> SnapshotSummary:
    summary: Optional[Dict[str, Any]] = None
    for record in records:
        if record.get("message_type") == SUMMARY_MESSAGE_TYPE:
            summary = record
    if summary is None:
        return SnapshotSummary()
    return SnapshotSummary.from_record(summary)


def snapshot_tags(tags: Sequence[str], engine: str, host_hint: Optional[str]) -> List[str]:
    return [*tags, f"type={engine or 'db'}", f"host={host_hint or 'unknown'}"]


class ResticClient:
    """Thin wrapper over the restic CLI."""

    def __init__(self, settings: ResticSettings, layout: BackupLayout) -> None:
        self._settings = settings.require()
        self._layout = layout

    @property
    def repository(self) -> str:
        return self._settings.repository or ""

    # Repository ------------------------------------------------------------
    def is_initialized(self) -> bool:
        try:
            result = self._run(["snapshots"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            LOG.warning("Could not probe restic repository: %s", exc)
            return False
        return result.returncode == 0

    def initialize(self) -> None:
        LOG.info("Restic repository not initialized; running: restic init")
        try:
            result = self._run(["init"])
        except OSError as exc:
            raise UploadFailure(f"restic init could not start: {exc}", exit_code=127) from exc
        if result.returncode != 0:
            raise UploadFailure("restic init failed", exit_code=result.returncode)

    def ensure_initialized(self) -> None:
        if self.is_initialized():
            LOG.info("Restic repository is available")
            return
        self.initialize()

    # Snapshots -------------------------------------------------------------
    def snapshot(self, path: Path, tags: Sequence[str]) -> SnapshotSummary:
        capture = self._layout.restic_capture
        capture.parent.mkdir(parents=True, exist_ok=True)
        cmd = ["backup", "--json"]
        for tag in tags:
            cmd.extend(["--tag", tag])
        cmd.append(str(path))

        LOG.info("Starting restic backup for %s (tags: %s)", path, " ".join(tags))
        try:
            with capture.open("w", encoding="utf-8") as fh:
                result = self._run(cmd, stdout=fh)
        except OSError as exc:
            raise UploadFailure(f"restic backup could not start: {exc}", exit_code=127) from exc
        if result.returncode != 0:
            LOG.error("restic backup failed (exit code %s)", result.returncode)
            raise UploadFailure("restic backup failed", exit_code=result.returncode)

        with capture.open("r", encoding="utf-8") as fh:
            summary = last_summary(iter_records(fh))

        if summary.snapshot_id or summary.data_added or summary.total_bytes_processed:
            LOG.info(
                "Restic summary: snapshot=%s data_added=%sB duration=%ss",
                summary.snapshot_id or "",
                summary.data_added,
                summary.total_duration,
            )
        else:
            LOG.info("No restic summary found in JSON output")
        return summary

    def latest_snapshot_id(self) -> Optional[str]:
        try:
            result = self._run(["snapshots", "--last", "--json"], stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        except OSError as exc:
            LOG.warning("Could not query latest snapshot: %s", exc)
            return None
        if result.returncode != 0:
            return None
        try:
            snapshots = json.loads(result.stdout or "[]")
        except ValueError:
            return None
        if not isinstance(snapshots, list) or not snapshots or not isinstance(snapshots[0], dict):
            return None
        latest = snapshots[0]
        return latest.get("short_id") or latest.get("id") or None

    # Retention -------------------------------------------------------------
    def forget(self, daily: int, weekly: int, monthly: int, yearly: int, prune: bool) -> None:
        cmd = [
            "forget",
            "--keep-daily",
            str(daily),
            "--keep-weekly",
            str(weekly),
            "--keep-monthly",
            str(monthly),
            "--keep-yearly",
            str(yearly),
        ]
        if prune:
            cmd.append("--prune")
        try:
            result = self._run(cmd)
        except OSError as exc:
            raise RetentionFailure(f"restic forget could not start: {exc}", exit_code=127) from exc
        if result.returncode != 0:
            LOG.error("restic forget failed (exit code %s)", result.returncode)
            raise RetentionFailure("restic forget failed", exit_code=result.returncode)

    # Internal helpers ------------------------------------------------------
    def _environment(self) -> Dict[str, str]:
        extra = {"RESTIC_REPOSITORY": self.repository}
        if self._settings.password:
            extra["RESTIC_PASSWORD"] = self._settings.password
        if self._settings.password_file:
            extra["RESTIC_PASSWORD_FILE"] = str(self._settings.password_file)
        return self._layout.child_environment(extra)

    def _run(self, args: List[str], **kwargs: Any) -> "subprocess.CompletedProcess[Any]":
        cmd = ["restic", "--cache-dir", str(self._layout.cache_dir), *args]
        if "stdout" in kwargs and kwargs["stdout"] is subprocess.PIPE:
            kwargs.setdefault("text", True)
        return subprocess.run(cmd, env=self._environment(), check=False, **kwargs)
