"""Runtime configuration.

Settings are built once per invocation from three layers, lowest first:

- built-in defaults (below)
- `PGBACKUP_*` environment variables (see `ENV_VARS`)
- CLI overrides (only options the operator actually passed)

The resulting `Settings` object is frozen and handed to every component.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pgbackup.core.errors import UsageError
from pgbackup.core.plugins.base import ConnectionParams


DEFAULT_BACKUP_DIR = "/home/backups"

# Setting path -> environment variable
ENV_VARS: Dict[str, str] = {
    "backup_dir": "PGBACKUP_BACKUP_DIR",
    "source.host": "PGBACKUP_SRC_HOST",
    "source.port": "PGBACKUP_SRC_PORT",
    "source.user": "PGBACKUP_SRC_USER",
    "source.database": "PGBACKUP_SRC_DB",
    "source.password": "PGBACKUP_SRC_PASSWORD",
    "destination.host": "PGBACKUP_DEST_HOST",
    "destination.port": "PGBACKUP_DEST_PORT",
    "destination.user": "PGBACKUP_DEST_USER",
    "destination.database": "PGBACKUP_DEST_DB",
    "destination.password": "PGBACKUP_DEST_PASSWORD",
    "s3.bucket": "PGBACKUP_S3_BUCKET",
    "s3.prefix": "PGBACKUP_S3_PREFIX",
    "s3.endpoint": "PGBACKUP_S3_ENDPOINT",
    "s3.access_key": "PGBACKUP_S3_ACCESS_KEY",
    "s3.secret_key": "PGBACKUP_S3_SECRET_KEY",
    "s3.region": "PGBACKUP_S3_REGION",
}


class DatabaseSettings(BaseModel):
    """Connection settings for one PostgreSQL server."""

    model_config = ConfigDict(frozen=True)

    host: str = Field("127.0.0.1", min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    user: str = Field("postgres", min_length=1)
    database: str = Field(..., min_length=1)
    password: Optional[str] = Field(None, description="Unset lets libpq use ~/.pgpass")

    def connection(self) -> ConnectionParams:
        return ConnectionParams(
            host=self.host,
            port=self.port,
            user=self.user,
            database=self.database,
            password=self.password,
        )


class SourceDatabase(DatabaseSettings):
    """Database being backed up; its name is the artifact database id."""

    database: str = Field("mydb", pattern=r"^[A-Za-z0-9_]+$")


class DestinationDatabase(DatabaseSettings):
    """Database that restores are written into."""

    host: str = Field("192.168.1.99", min_length=1)
    database: str = Field("mydb_restore", min_length=1)


class S3Settings(BaseModel):
    """Remote bucket namespace and optional explicit credentials."""

    model_config = ConfigDict(frozen=True)

    bucket: Optional[str] = None
    prefix: str = ""
    endpoint: Optional[str] = Field(None, description="Custom endpoint, e.g. MinIO at minio:9000")
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: Optional[str] = None

    @field_validator("endpoint")
    @classmethod
    def _normalize_endpoint(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if "://" not in value:
            return f"https://{value}"
        return value


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    backup_dir: Path = Path(DEFAULT_BACKUP_DIR)
    source: SourceDatabase = Field(default_factory=SourceDatabase)
    destination: DestinationDatabase = Field(default_factory=DestinationDatabase)
    s3: S3Settings = Field(default_factory=S3Settings)


def _set_path(tree: Dict[str, Any], dotted: str, value: Any) -> None:
    node = tree
    parts = dotted.split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def load_settings(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build Settings from defaults, environment and CLI overrides.

    `overrides` uses the dotted keys of `ENV_VARS` (e.g. `source.host`);
    None values are ignored so unset CLI options never clobber lower layers.

    Raises UsageError if the merged values fail validation.
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    for dotted, env_name in ENV_VARS.items():
        value = environ.get(env_name)
        if value is not None and value != "":
            _set_path(data, dotted, value)

    for dotted, value in (overrides or {}).items():
        if value is None:
            continue
        if dotted not in ENV_VARS:
            raise UsageError(f"Unknown setting: {dotted}")
        _set_path(data, dotted, value)

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise UsageError(f"Invalid configuration: {problems}") from exc
