from __future__ import annotations

import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote_plus

import yaml
from croniter import CroniterBadCronError, croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CONFIG_FILE_ENV = "BACKUP_CONFIG_FILE"

# Every key understood by load_config; used to snapshot settings for cron runs.
KNOWN_KEYS = (
    "DB_TYPE",
    "BACKUP_DIR",
    "BACKUP_WORK_DIR",
    "BACKUP_INTERVAL_SECONDS",
    "CRON_SCHEDULE",
    "TZ",
    "BACKUP_USER",
    "LOG_LEVEL",
    "RESTIC_REPOSITORY",
    "RESTIC_PASSWORD",
    "RESTIC_PASSWORD_FILE",
    "RESTIC_TAGS",
    "KEEP_DAILIES",
    "KEEP_WEEKLIES",
    "KEEP_MONTHLIES",
    "KEEP_YEARLIES",
    "PRUNE_ON_SUCCESS",
    "WEBHOOK_URL",
    "WEBHOOK_METHOD",
    "WEBHOOK_AUTH_HEADER",
    "WEBHOOK_EXTRA_HEADERS",
    "WEBHOOK_TIMEOUT_SECONDS",
    "PGHOST",
    "PGPORT",
    "PGUSER",
    "PGPASSWORD",
    "PGDATABASE",
    "PG_DUMP_ALL",
    "MYSQL_HOST",
    "MYSQL_PORT",
    "MYSQL_USER",
    "MYSQL_PASSWORD",
    "MYSQL_DATABASE",
    "MONGO_URI",
    "MONGODB_URI",
    "MONGO_HOST",
    "MONGO_PORT",
    "MONGO_USER",
    "MONGO_PASSWORD",
    "MONGO_AUTH_DB",
)


class ConfigurationError(Exception):
    """Raised when the backup configuration is missing or invalid."""


class DatabaseEngine(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"

    @classmethod
    def parse(cls, value: str) -> "DatabaseEngine":
        key = (value or "").strip().lower()
        try:
            return ENGINE_SYNONYMS[key]
        except KeyError:
            raise ValueError(
                f"Unknown or missing DB_TYPE '{value}'. Supported: postgres, mysql/mariadb, mongo"
            ) from None


ENGINE_SYNONYMS: Dict[str, DatabaseEngine] = {
    "postgres": DatabaseEngine.POSTGRES,
    "postgresql": DatabaseEngine.POSTGRES,
    "pg": DatabaseEngine.POSTGRES,
    "mysql": DatabaseEngine.MYSQL,
    "mariadb": DatabaseEngine.MYSQL,
    "mongo": DatabaseEngine.MONGODB,
    "mongodb": DatabaseEngine.MONGODB,
}


class _Settings(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Database connections ----------------------------------------------------


class PostgresSettings(_Settings):
    host: str = "postgres"
    port: int = 5432
    user: str = "postgres"
    password: Optional[str] = None
    database: str = "postgres"
    dump_all: bool = False


class MySQLSettings(_Settings):
    host: str = "mysql"
    port: int = 3306
    user: str = "root"
    password: Optional[str] = None
    database: Optional[str] = Field(default=None, description="Dump all databases when unset.")


class MongoSettings(_Settings):
    uri: Optional[str] = Field(default=None, description="Full connection URI; wins over the parts below.")
    host: str = "mongo"
    port: int = 27017
    user: Optional[str] = None
    password: Optional[str] = None
    auth_db: Optional[str] = None

    def connection_uri(self) -> str:
        if self.uri:
            return self.uri
        if self.user and self.password:
            userinfo = f"{quote_plus(self.user)}:{quote_plus(self.password)}"
            base = f"mongodb://{userinfo}@{self.host}:{self.port}/"
            if self.auth_db:
                return f"{base}?authSource={quote_plus(self.auth_db)}"
            return base
        return f"mongodb://{self.host}:{self.port}/"


# --- Snapshot store ----------------------------------------------------------


class ResticSettings(_Settings):
    repository: Optional[str] = None
    password: Optional[str] = None
    password_file: Optional[Path] = None
    tags: List[str] = Field(default_factory=lambda: ["db", "encrypted"])

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return value

    def require(self) -> "ResticSettings":
        if not self.repository:
            raise ConfigurationError("Required environment variable is missing: RESTIC_REPOSITORY")
        if not self.password and not self.password_file:
            raise ConfigurationError(
                "RESTIC_PASSWORD or RESTIC_PASSWORD_FILE is required for client-side encryption"
            )
        return self


class RetentionSettings(_Settings):
    daily: int = Field(default=7, ge=0)
    weekly: int = Field(default=4, ge=0)
    monthly: int = Field(default=12, ge=0)
    yearly: int = Field(default=3, ge=0)
    prune: bool = True


# --- Notification ------------------------------------------------------------


class WebhookSettings(_Settings):
    url: Optional[str] = None
    method: str = "POST"
    auth_header: Optional[str] = None
    extra_headers: Optional[str] = None
    timeout_seconds: float = Field(default=10, gt=0)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.strip().upper()


# --- Scheduling and paths ----------------------------------------------------


class ScheduleSettings(_Settings):
    interval_seconds: int = Field(default=0, ge=0)
    cron: Optional[str] = None
    timezone: str = "UTC"
    backup_user: str = "backups"

    @field_validator("cron")
    @classmethod
    def _validate_cron(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            croniter(value, datetime.now(timezone.utc))
        except (CroniterBadCronError, ValueError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc
        return value

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value


class PathSettings(_Settings):
    backup_dir: Path = Path("/backup")
    work_dir: Path = Path("/backup/work")

    @model_validator(mode="before")
    @classmethod
    def _default_work_dir(cls, values: Any) -> Any:
        if isinstance(values, dict) and not values.get("work_dir"):
            backup_dir = Path(values.get("backup_dir") or "/backup")
            values = {**values, "work_dir": backup_dir / "work"}
        return values


class RunConfiguration(_Settings):
    engine: Optional[DatabaseEngine] = None
    postgres: PostgresSettings = PostgresSettings()
    mysql: MySQLSettings = MySQLSettings()
    mongo: MongoSettings = MongoSettings()
    restic: ResticSettings = ResticSettings()
    retention: RetentionSettings = RetentionSettings()
    webhook: WebhookSettings = WebhookSettings()
    schedule: ScheduleSettings = ScheduleSettings()
    paths: PathSettings = PathSettings()
    log_level: str = "INFO"

    @field_validator("engine", mode="before")
    @classmethod
    def _normalize_engine(cls, value: Any) -> Optional[DatabaseEngine]:
        if isinstance(value, DatabaseEngine):
            return value
        if value is None or not str(value).strip():
            return None
        return DatabaseEngine.parse(str(value))

    def require_engine(self) -> DatabaseEngine:
        if self.engine is None:
            raise ConfigurationError("Unknown or missing DB_TYPE. Supported: postgres, mysql/mariadb, mongo")
        return self.engine

    def default_host_hint(self) -> str:
        if self.engine is DatabaseEngine.POSTGRES:
            return self.postgres.host
        if self.engine is DatabaseEngine.MYSQL:
            return self.mysql.host
        if self.engine is DatabaseEngine.MONGODB:
            return self.mongo.host
        return "unknown"


def _pick(env: Mapping[str, str], mapping: Dict[str, str]) -> Dict[str, str]:
    return {field: env[key] for field, key in mapping.items() if env.get(key)}


def _parse_postgres(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(
        env,
        {
            "host": "PGHOST",
            "port": "PGPORT",
            "user": "PGUSER",
            "password": "PGPASSWORD",
            "database": "PGDATABASE",
            "dump_all": "PG_DUMP_ALL",
        },
    )


def _parse_mysql(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(
        env,
        {
            "host": "MYSQL_HOST",
            "port": "MYSQL_PORT",
            "user": "MYSQL_USER",
            "password": "MYSQL_PASSWORD",
            "database": "MYSQL_DATABASE",
        },
    )


def _parse_mongo(env: Mapping[str, str]) -> Dict[str, str]:
    data = _pick(
        env,
        {
            "host": "MONGO_HOST",
            "port": "MONGO_PORT",
            "user": "MONGO_USER",
            "password": "MONGO_PASSWORD",
            "auth_db": "MONGO_AUTH_DB",
        },
    )
    uri = env.get("MONGO_URI") or env.get("MONGODB_URI")
    if uri:
        data["uri"] = uri
    return data


def _parse_restic(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(
        env,
        {
            "repository": "RESTIC_REPOSITORY",
            "password": "RESTIC_PASSWORD",
            "password_file": "RESTIC_PASSWORD_FILE",
            "tags": "RESTIC_TAGS",
        },
    )


def _parse_retention(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(
        env,
        {
            "daily": "KEEP_DAILIES",
            "weekly": "KEEP_WEEKLIES",
            "monthly": "KEEP_MONTHLIES",
            "yearly": "KEEP_YEARLIES",
            "prune": "PRUNE_ON_SUCCESS",
        },
    )


def _parse_webhook(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(
        env,
        {
            "url": "WEBHOOK_URL",
            "method": "WEBHOOK_METHOD",
            "auth_header": "WEBHOOK_AUTH_HEADER",
            "extra_headers": "WEBHOOK_EXTRA_HEADERS",
            "timeout_seconds": "WEBHOOK_TIMEOUT_SECONDS",
        },
    )


def _parse_schedule(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(
        env,
        {
            "interval_seconds": "BACKUP_INTERVAL_SECONDS",
            "cron": "CRON_SCHEDULE",
            "timezone": "TZ",
            "backup_user": "BACKUP_USER",
        },
    )


def _parse_paths(env: Mapping[str, str]) -> Dict[str, str]:
    return _pick(env, {"backup_dir": "BACKUP_DIR", "work_dir": "BACKUP_WORK_DIR"})


def read_config_file(path: Path) -> Dict[str, str]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return {str(key): "" if value is None else str(value) for key, value in raw.items()}


def merged_environment(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Environment values layered over the optional BACKUP_CONFIG_FILE mapping."""
    env = dict(os.environ if environ is None else environ)
    config_file = env.get(CONFIG_FILE_ENV)
    if not config_file:
        return env
    merged = read_config_file(Path(config_file).expanduser())
    merged.update({key: value for key, value in env.items() if value != ""})
    return merged


def load_config(environ: Optional[Mapping[str, str]] = None) -> RunConfiguration:
    env = merged_environment(environ)
    raw: Dict[str, Any] = {
        "engine": env.get("DB_TYPE", ""),
        "postgres": _parse_postgres(env),
        "mysql": _parse_mysql(env),
        "mongo": _parse_mongo(env),
        "restic": _parse_restic(env),
        "retention": _parse_retention(env),
        "webhook": _parse_webhook(env),
        "schedule": _parse_schedule(env),
        "paths": _parse_paths(env),
    }
    if env.get("LOG_LEVEL"):
        raw["log_level"] = env["LOG_LEVEL"].upper()

    try:
        return RunConfiguration.model_validate(raw)
    except Exception as exc:  # noqa: BLE001
        raise ConfigurationError(str(exc)) from exc


def snapshot_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = merged_environment(environ)
    return {key: env[key] for key in KNOWN_KEYS if env.get(key)}
