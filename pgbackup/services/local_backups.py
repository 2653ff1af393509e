"""Local backup directory: listing, path resolution and deletion of artifacts."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from pgbackup.core.plugins.base import ArtifactStore
from pgbackup.domain.artifacts import ARTIFACT_EXTENSION, ListingEntry
from pgbackup.domain.enums import Location


logger = logging.getLogger(__name__)


class LocalBackupStore(ArtifactStore):
    """Flat directory of `*.dump` artifacts (no sub-directories are scanned)."""

    location = Location.LOCAL

    def __init__(self, backup_dir: str | os.PathLike) -> None:
        self.backup_dir = Path(backup_dir)

    def describe(self) -> str:
        return str(self.backup_dir)

    def exists(self) -> bool:
        return self.backup_dir.is_dir()

    def ensure(self) -> Path:
        """Create the backup directory if needed and return it."""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OSError(f"Cannot create backup directory: {self.backup_dir}: {exc}") from exc
        return self.backup_dir

    def path_for(self, name: str) -> Path:
        """Resolve an artifact name (or an absolute path) against the directory."""
        return self.backup_dir / name

    def list_entries(self) -> List[ListingEntry]:
        """List regular `*.dump` files with their modification time.

        Files that are not dumps at all are not part of the listing; dump files
        with a non-conforming name are listed so sweeps can report them.
        """
        if not self.exists():
            return []

        entries: List[ListingEntry] = []
        for file_path in sorted(self.backup_dir.iterdir()):
            if not file_path.name.endswith(f".{ARTIFACT_EXTENSION}"):
                continue
            if not file_path.is_file():
                continue
            try:
                stat = file_path.stat()
            except OSError as exc:
                logger.debug("local_stat_failed | path=%s error=%s", file_path, exc)
                continue
            entries.append(
                ListingEntry(
                    name=file_path.name,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return entries

    def delete(self, entry: ListingEntry) -> None:
        os.remove(self.path_for(entry.name))
