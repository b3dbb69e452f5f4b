from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Callable, Dict, List, Optional, Sequence

from .config import ConfigurationError, RunConfiguration, load_config
from .errors import BackupError
from .execution import ExecutionContext
from .logger import configure_logging
from .orchestrator import BackupOrchestrator
from .restic import ResticClient
from .retention import RetentionPolicy, enforce_retention
from .scheduler import Scheduler
from .storage import build_layout

LOG = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="db-backup",
        description="Dump a database and back it up to an encrypted restic repository.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="start",
        help=(
            "start (default), run-once, run-once-as-backups, forget-prune, init; "
            "anything else is executed as a command."
        ),
    )
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for a passthrough command.")
    return parser.parse_args(argv)


def load_configuration() -> RunConfiguration:
    config = load_config()
    configure_logging(config.log_level)
    return config


def cmd_start(config: RunConfiguration) -> int:
    orchestrator = BackupOrchestrator(config)
    scheduler = Scheduler(config, run_once=orchestrator.run_once, layout=build_layout(config.paths))
    return scheduler.start()


def cmd_run_once(config: RunConfiguration) -> int:
    return BackupOrchestrator(config).run_once()


def cmd_run_once_as_backups(config: RunConfiguration) -> int:
    orchestrator = BackupOrchestrator(config)
    context = ExecutionContext(build_layout(config.paths), config.schedule.backup_user)
    return context.run_once_unprivileged(orchestrator.run_once)


def cmd_forget_prune(config: RunConfiguration) -> int:
    layout = build_layout(config.paths)
    layout.prepare()
    client = ResticClient(config.restic, layout)
    LOG.info("Manual retention: forget --prune")
    try:
        enforce_retention(client, RetentionPolicy.from_settings(config.retention), prune=True)
    except BackupError as exc:
        LOG.error("%s", exc)
        return exc.exit_code
    return 0


def cmd_init(config: RunConfiguration) -> int:
    layout = build_layout(config.paths)
    layout.prepare()
    client = ResticClient(config.restic, layout)
    try:
        client.initialize()
    except BackupError as exc:
        LOG.error("%s", exc)
        return exc.exit_code
    return 0


COMMANDS: Dict[str, Callable[[RunConfiguration], int]] = {
    "start": cmd_start,
    "run-once": cmd_run_once,
    "run-once-as-backups": cmd_run_once_as_backups,
    "forget-prune": cmd_forget_prune,
    "init": cmd_init,
}


def passthrough(command: str, args: List[str]) -> int:
    try:
        os.execvp(command, [command, *args])
    except OSError as exc:
        LOG.error("Could not execute %s: %s", command, exc)
        return 127
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    handler = COMMANDS.get(args.command)
    if handler is None:
        return passthrough(args.command, list(args.args))

    try:
        config = load_configuration()
        return handler(config)
    except ConfigurationError as exc:
        LOG.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
