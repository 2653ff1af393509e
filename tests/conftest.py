"""Root conftest for tests directory."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from pgbackup.core.config import Settings, load_settings
from pgbackup.core.errors import DumpError, TransferError
from pgbackup.core.plugins.base import ConnectionParams, DumpPlugin, RemoteStore
from pgbackup.domain.artifacts import ListingEntry
from pgbackup.services.local_backups import LocalBackupStore


class FakeDumpPlugin(DumpPlugin):
    """Dump engine that writes bytes to disk instead of calling pg_dump."""

    def __init__(self, *, fail_dump: bool = False, fail_restore: bool = False, payload: bytes = b"PGDMP"):
        super().__init__(name="fake", version="1.0.0")
        self.fail_dump = fail_dump
        self.fail_restore = fail_restore
        self.payload = payload
        self.calls: List[tuple] = []

    def required_binaries(self, *, backup: bool, restore: bool) -> List[str]:
        return []

    async def create_dump(self, connection: ConnectionParams, output_path: str):
        self.calls.append(("dump", connection.database, output_path))
        if self.fail_dump:
            raise DumpError("pg_dump failed for database mydb: connection refused")
        with open(output_path, "wb") as fh:
            fh.write(self.payload)
        return {"artifact_path": output_path}

    async def restore_dump(self, connection: ConnectionParams, input_path: str):
        self.calls.append(("restore", connection.database, input_path))
        if self.fail_restore:
            raise DumpError("pg_restore failed")
        return {"status": "success", "artifact_path": input_path}


class FakeRemoteStore(RemoteStore):
    """In-memory bucket: name -> (bytes, last_modified)."""

    def __init__(self, objects: Optional[Dict[str, tuple]] = None, *, fail_delete: Optional[set] = None):
        self.objects: Dict[str, tuple] = dict(objects or {})
        self.fail_delete = set(fail_delete or ())
        self.calls: List[tuple] = []

    def describe(self) -> str:
        return "s3://bucket/prefix/"

    def exists(self) -> bool:
        return True

    def key_for(self, name: str) -> str:
        return f"prefix/{name}"

    def list_entries(self) -> List[ListingEntry]:
        return [
            ListingEntry(name=name, last_modified=modified, key=self.key_for(name))
            for name, (_, modified) in sorted(self.objects.items())
        ]

    def download(self, name: str, local_path: str):
        self.calls.append(("download", name))
        data, _ = self.objects[name]
        Path(local_path).write_bytes(data)
        return {"artifact_path": local_path}

    def upload(self, local_path: str, name: str):
        self.calls.append(("upload", name))
        self.objects[name] = (Path(local_path).read_bytes(), datetime.now(timezone.utc))
        return {"key": self.key_for(name)}

    def delete(self, entry: ListingEntry) -> None:
        self.calls.append(("delete", entry.name))
        if entry.name in self.fail_delete:
            raise TransferError(f"S3 delete failed for {entry.name}")
        del self.objects[entry.name]


def touch_artifact(directory: Path, name: str, modified: datetime, data: bytes = b"PGDMP") -> Path:
    """Create a file and set its mtime."""
    path = directory / name
    path.write_bytes(data)
    ts = modified.timestamp()
    os.utime(path, (ts, ts))
    return path


@pytest.fixture()
def backup_dir(tmp_path: Path) -> Path:
    path = tmp_path / "backups"
    path.mkdir()
    return path


@pytest.fixture()
def settings(backup_dir: Path) -> Settings:
    """Settings pointing at a temporary backup directory, isolated from env."""
    return load_settings(
        {
            "backup_dir": str(backup_dir),
            "source.database": "app",
            "destination.database": "app_restore",
            "s3.bucket": "bucket",
            "s3.prefix": "prefix",
        },
        environ={},
    )


@pytest.fixture()
def local_store(backup_dir: Path) -> LocalBackupStore:
    return LocalBackupStore(backup_dir)
