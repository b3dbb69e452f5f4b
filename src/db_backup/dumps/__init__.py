from __future__ import annotations

from typing import Dict, Type

from db_backup.config import DatabaseEngine
from db_backup.storage import BackupLayout

from .base import DumpAdapter, DumpResult, redact_uri, strip_credentials
from .mongo import MongoDumpAdapter
from .mysql import MySQLDumpAdapter
from .postgres import PostgresDumpAdapter

ADAPTERS: Dict[DatabaseEngine, Type[DumpAdapter]] = {
    DatabaseEngine.POSTGRES: PostgresDumpAdapter,
    DatabaseEngine.MYSQL: MySQLDumpAdapter,
    DatabaseEngine.MONGODB: MongoDumpAdapter,
}


def create_adapter(engine: DatabaseEngine, layout: BackupLayout) -> DumpAdapter:
    try:
        adapter_cls = ADAPTERS[engine]
    except KeyError:
        raise ValueError(f"No dump adapter registered for '{engine}'.") from None
    return adapter_cls(layout)


__all__ = [
    "ADAPTERS",
    "DumpAdapter",
    "DumpResult",
    "create_adapter",
    "redact_uri",
    "strip_credentials",
]
