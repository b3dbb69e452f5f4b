from __future__ import annotations

import logging
import shutil

from db_backup.config import DatabaseEngine, RunConfiguration

from .archive import package_directory
from .base import DumpAdapter, DumpResult, redact_uri, run_dump_tool, strip_credentials

LOG = logging.getLogger(__name__)


class MongoDumpAdapter(DumpAdapter):
    """mongodump into a directory, then collapse it into one deterministic archive."""

    engine = DatabaseEngine.MONGODB

    def produce(self, config: RunConfiguration) -> DumpResult:
        uri = config.mongo.connection_uri()
        workspace = self._fresh_workspace()
        dump_dir = workspace / "dump"
        artifact = workspace / "mongodump.tar.zst"

        LOG.info("Starting MongoDB dump (%s)", redact_uri(uri))
        run_dump_tool(["mongodump", "--uri", uri, "--out", str(dump_dir)], self._layout.child_environment())

        LOG.info("Creating zstd compressed archive of MongoDB dump for better incremental backups")
        package_directory(dump_dir, artifact)
        shutil.rmtree(dump_dir, ignore_errors=True)

        return self._result(artifact, host_hint=strip_credentials(uri))
