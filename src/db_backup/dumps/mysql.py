from __future__ import annotations

import logging

from db_backup.config import DatabaseEngine, RunConfiguration

from .base import DumpAdapter, DumpResult, run_dump_tool

LOG = logging.getLogger(__name__)

DUMP_FLAGS = [
    "--single-transaction",
    "--routines",
    "--events",
    "--skip-comments",
    "--skip-dump-date",
]


class MySQLDumpAdapter(DumpAdapter):
    """mysqldump for MySQL and MariaDB; one database or all of them."""

    engine = DatabaseEngine.MYSQL

    def produce(self, config: RunConfiguration) -> DumpResult:
        my = config.mysql
        workspace = self._fresh_workspace()
        artifact = workspace / "mysql.sql"

        target = [my.database] if my.database else ["--all-databases"]
        cmd = ["mysqldump", "-h", my.host, "-P", str(my.port), "-u", my.user, *DUMP_FLAGS, *target]

        env = self._layout.child_environment()
        env["MYSQL_PWD"] = my.password or ""

        LOG.info("Starting MySQL/MariaDB dump (%s:%s)", my.host, my.port)
        run_dump_tool(cmd, env, output=artifact)
        return self._result(artifact, host_hint=my.host)
