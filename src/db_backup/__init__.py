"""Database dump + restic backup orchestration package."""

from __future__ import annotations

from .config import load_config, RunConfiguration  # noqa: F401
from .orchestrator import BackupOrchestrator  # noqa: F401
