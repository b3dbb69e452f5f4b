from __future__ import annotations

import logging

from db_backup.config import DatabaseEngine, RunConfiguration

from .base import DumpAdapter, DumpResult, run_dump_tool

LOG = logging.getLogger(__name__)

# Ownership and comment metadata are left out of the dump.
COMMON_FLAGS = ["--no-owner", "--clean", "--no-comments"]


class PostgresDumpAdapter(DumpAdapter):
    engine = DatabaseEngine.POSTGRES

    def produce(self, config: RunConfiguration) -> DumpResult:
        pg = config.postgres
        workspace = self._fresh_workspace()
        artifact = workspace / "postgres.sql"

        connection = ["-h", pg.host, "-p", str(pg.port), "-U", pg.user]
        if pg.dump_all:
            LOG.info("Starting Postgres dump of all databases (%s:%s)", pg.host, pg.port)
            cmd = ["pg_dumpall", *connection, *COMMON_FLAGS]
        else:
            LOG.info("Starting Postgres dump (%s:%s, database=%s)", pg.host, pg.port, pg.database)
            cmd = ["pg_dump", *connection, "-d", pg.database, *COMMON_FLAGS]

        env = self._layout.child_environment()
        if pg.password:
            env["PGPASSWORD"] = pg.password

        run_dump_tool(cmd, env, output=artifact)
        return self._result(artifact, host_hint=pg.host)
